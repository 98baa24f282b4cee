"""
Stiffness-Aware Integrator
==========================

Wraps scipy's LSODA, which switches automatically between non-stiff Adams
and stiff BDF formulas. Each outer step is an independent initial value
problem over [t, t + dt]; LSODA chooses its own internal steps.
"""

import numpy as np
from scipy.integrate import solve_ivp

from .base import Integrator, IntegrationMethod, StepResult, RateFunction
from ..utils.exceptions import StepRejected
from ..utils.logger import get_logger

logger = get_logger(__name__)

GROWTH_FACTOR = 2.0


class StiffAware(Integrator):
    """
    LSODA integrator.

    The absolute tolerance is configured on concentrations and is converted
    to amounts per state entry using the compartment volumes.
    """

    method = IntegrationMethod.STIFF_AWARE

    def __init__(self, system, config=None):
        super().__init__(system, config)
        self._atol = self.config.abs_tol * system.error_scale()

    def _advance(self, state: np.ndarray, t: float, dt: float,
                 rate_fn: RateFunction) -> StepResult:
        solution = solve_ivp(
            lambda s, y: self.system.derivative(y, rate_fn(s)),
            (t, t + dt),
            state,
            method='LSODA',
            rtol=self.config.rel_tol,
            atol=self._atol,
            max_step=dt,
            first_step=min(dt, self.config.dt_init),
        )

        if not solution.success:
            self.rejected_steps += 1
            raise StepRejected(
                f"LSODA failed at t={t:.6g} min (dt={dt:.3g}): {solution.message}",
                time=t,
                dt=dt,
                error_norm=float('inf'),
            )

        next_dt = min(dt * GROWTH_FACTOR, self.config.max_step)
        return StepResult(solution.y[:, -1], t + dt, dt, next_dt)
