"""
Adaptive Dormand-Prince 5(4) Integrator
=======================================

Embedded Runge-Kutta pair with local error control. The fifth-order
solution is propagated; the difference to the embedded fourth-order
solution estimates the local truncation error.

Error norm (RMS over state entries, concentrations):
    err_norm = sqrt(mean((eᵢ / (atol + rtol·max(|y0ᵢ|, |y1ᵢ|)))²))

Step control:
    reject (err_norm > 1):  dt ← dt/2, retry up to max_retries times
    accept:                 next_dt = dt·clip(0.9·err_norm^(−1/5), 0.2, 5)

References:
-----------
- Dormand JR, Prince PJ. "A family of embedded Runge-Kutta formulae."
  J Comput Appl Math. 1980;6(1):19-26.
"""

import numpy as np

from .base import Integrator, IntegrationMethod, StepResult, RateFunction
from ..utils.exceptions import StepRejected, STATE_NAMES
from ..utils.logger import get_logger

logger = get_logger(__name__)


# Butcher tableau
C = np.array([0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0, 1.0])
A = [
    [],
    [1 / 5],
    [3 / 40, 9 / 40],
    [44 / 45, -56 / 15, 32 / 9],
    [19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729],
    [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656],
    [35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84],
]
B5 = np.array([35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0.0])
B4 = np.array([5179 / 57600, 0.0, 7571 / 16695, 393 / 640, -92097 / 339200, 187 / 2100, 1 / 40])
E = B5 - B4

SAFETY = 0.9
MIN_FACTOR = 0.2
MAX_FACTOR = 5.0
ORDER_EXPONENT = 1.0 / 5.0


class AdaptiveRK45(Integrator):
    """
    Dormand-Prince integrator with step-size control.

    Example:
        >>> integrator = AdaptiveRK45(system, IntegratorConfig())
        >>> result = integrator.step(state, t=0.0, dt=0.005, rate_fn=lambda t: 1.0)
        >>> result.next_dt >= result.dt
        True
    """

    method = IntegrationMethod.ADAPTIVE_RK45

    def __init__(self, system, config=None):
        super().__init__(system, config)
        self._scale = system.error_scale()

    def _stages(self, state: np.ndarray, t: float, dt: float,
                rate_fn: RateFunction) -> np.ndarray:
        k = np.empty((7, state.size))
        k[0] = self.derivative(state, t, rate_fn)
        for i in range(1, 7):
            k[i] = self.derivative(state + dt * np.dot(A[i], k[:i]), t + C[i] * dt, rate_fn)
        return k

    def error_norm(self, state: np.ndarray, new_state: np.ndarray,
                   error: np.ndarray) -> float:
        """RMS error relative to tolerance, measured on concentrations."""
        y0 = np.abs(state) / self._scale
        y1 = np.abs(new_state) / self._scale
        tolerance = self.config.abs_tol + self.config.rel_tol * np.maximum(y0, y1)
        ratio = (error / self._scale) / tolerance
        return float(np.sqrt(np.mean(ratio ** 2)))

    def _advance(self, state: np.ndarray, t: float, dt: float,
                 rate_fn: RateFunction) -> StepResult:
        config = self.config
        dt = min(dt, config.max_step)
        error_norm = np.inf
        worst = 0

        for attempt in range(config.max_retries + 1):
            k = self._stages(state, t, dt, rate_fn)
            new_state = state + dt * np.dot(B5, k)
            error = dt * np.dot(E, k)

            if np.all(np.isfinite(new_state)) and np.all(np.isfinite(error)):
                error_norm = self.error_norm(state, new_state, error)
                worst = int(np.argmax(np.abs(error) / self._scale))
            else:
                error_norm = np.inf
                worst = int(np.argmax(~np.isfinite(new_state) | ~np.isfinite(error)))

            if error_norm <= 1.0:
                if error_norm == 0.0:
                    factor = MAX_FACTOR
                else:
                    factor = min(MAX_FACTOR, max(MIN_FACTOR, SAFETY * error_norm ** -ORDER_EXPONENT))
                next_dt = min(dt * factor, config.max_step)
                return StepResult(new_state, t + dt, dt, next_dt)

            self.rejected_steps += 1
            logger.debug(
                "Step rejected at t=%.6g (dt=%.3g, err=%.3g, attempt %d)",
                t, dt, error_norm, attempt + 1,
            )
            if attempt == config.max_retries:
                break
            dt *= 0.5
            if dt < config.min_step:
                break

        raise StepRejected(
            f"Step rejected at t={t:.6g} min: error norm {error_norm:.3g} "
            f"with dt={dt:.3g} after {config.max_retries} retries",
            time=t,
            dt=dt,
            error_norm=error_norm,
            compartment=STATE_NAMES[worst],
        )
