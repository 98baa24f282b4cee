"""
Full-Run Integration Loop
=========================

Drives an integrator from t0 to t_end and records the trajectory.

Step placement:
    - Steps are shortened so they land exactly on rate breakpoints, bolus
      times and t_end; the rate is therefore smooth inside every step.
    - Inside a step the rate function is read at its left limit at the
      step end, so a right-continuous schedule never leaks the next
      phase's rate into the current step.
    - Boluses are added to A1 at their instant; the sample recorded at
      that time is the post-bolus state.

Sampling:
    - Without an output interval, one sample per accepted step.
    - With an output interval, samples on the fixed grid t0 + k·h (and at
      t_end), from cubic Hermite interpolation between step endpoints.

Failure policy:
    StepRejected escalates to NumericalDivergence. A divergence ends the
    run; the samples recorded so far are kept and a FailureRecord is
    attached to the trajectory.
"""

import math
from bisect import bisect_right
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from .base import Integrator, IntegratorConfig, IntegrationMethod, RateFunction
from .fixed_step import FixedEuler, FixedRK4
from .adaptive import AdaptiveRK45
from .stiff import StiffAware
from .trajectory import Trajectory, TrajectorySample, FailureRecord
from ..dosing.schedule import DosingSchedule
from ..models.pharmacokinetics.compartment_system import (
    CompartmentSystem,
    CompartmentState,
    IDX_A1,
    IDX_ADMINISTERED,
)
from ..utils.exceptions import NumericalDivergence, StepRejected, ConfigurationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

INTEGRATORS = {
    IntegrationMethod.FIXED_EULER: FixedEuler,
    IntegrationMethod.FIXED_RK4: FixedRK4,
    IntegrationMethod.ADAPTIVE_RK45: AdaptiveRK45,
    IntegrationMethod.STIFF_AWARE: StiffAware,
}

# Remainders shorter than this (relative to the step) are merged into the step
_MERGE_FRACTION = 1e-6
_TIME_EPS = 1e-12


def create_integrator(system: CompartmentSystem,
                      config: Optional[IntegratorConfig] = None) -> Integrator:
    """
    Build the integrator selected by ``config.method``.

    Example:
        >>> integrator = create_integrator(system, IntegratorConfig(method='fixed_rk4'))
    """
    config = config or IntegratorConfig()
    try:
        cls = INTEGRATORS[config.method]
    except KeyError:
        raise ConfigurationError(f"No integrator for method {config.method}")
    return cls(system, config)


class _LeftLimitRate:
    """Rate function restricted to one step, read at its left limit at the end."""

    def __init__(self, rate_fn: RateFunction, t_start: float, t_stop: float):
        self.rate_fn = rate_fn
        self.t_start = t_start
        self.t_last = np.nextafter(t_stop, t_start) if t_stop > t_start else t_start

    def __call__(self, t: float) -> float:
        return self.rate_fn(min(max(t, self.t_start), self.t_last))


def _hermite(t: float, t0: float, t1: float, y0: np.ndarray, y1: np.ndarray,
             f0: np.ndarray, f1: np.ndarray) -> np.ndarray:
    """Cubic Hermite interpolant between two step endpoints."""
    h = t1 - t0
    s = (t - t0) / h
    h00 = 2 * s ** 3 - 3 * s ** 2 + 1
    h10 = s ** 3 - 2 * s ** 2 + s
    h01 = -2 * s ** 3 + 3 * s ** 2
    h11 = s ** 3 - s ** 2
    return h00 * y0 + h10 * h * f0 + h01 * y1 + h11 * h * f1


class _Recorder:
    """Turns state vectors into trajectory samples."""

    def __init__(self, trajectory: Trajectory, system: CompartmentSystem, rate_fn: RateFunction):
        self.trajectory = trajectory
        self.system = system
        self.rate_fn = rate_fn

    def record(self, t: float, state: np.ndarray) -> None:
        state = self.system.clamp(state)
        self.trajectory.append(TrajectorySample(
            time=float(t),
            a1=float(state[0]),
            a2=float(state[1]),
            a3=float(state[2]),
            cp=self.system.plasma_concentration(state),
            ce=float(state[3]),
            rate=float(self.rate_fn(t)),
            eliminated=float(state[4]),
            administered=float(state[5]),
        ))


def integrate(
    system: CompartmentSystem,
    initial_state: Union[CompartmentState, Sequence[float]],
    t0: float,
    t_end: float,
    rate_fn: RateFunction,
    config: Optional[IntegratorConfig] = None,
    boluses: Iterable[Tuple[float, float]] = (),
    breakpoints: Iterable[float] = (),
    integrator: Optional[Integrator] = None,
) -> Trajectory:
    """
    Integrate the compartment system from t0 to t_end.

    Args:
        system: Compartment system to integrate
        initial_state: State at t0
        t0: Start time (min)
        t_end: End time (min), must be after t0
        rate_fn: Infusion rate (mg/min) as a function of time. A
            DosingSchedule also contributes its boluses and breakpoints.
        config: Integrator configuration (defaults if None)
        boluses: Extra (time, amount) boluses
        breakpoints: Extra times at which steps must land
        integrator: Pre-built integrator (built from config if None)

    Returns:
        Trajectory; check ``trajectory.failure`` for runs that diverged

    Raises:
        ConfigurationError: If t_end is not after t0
    """
    config = config or (integrator.config if integrator is not None else IntegratorConfig())
    integrator = integrator or create_integrator(system, config)

    if not (math.isfinite(t0) and math.isfinite(t_end) and t_end > t0):
        raise ConfigurationError(f"Invalid integration window [{t0}, {t_end}]")

    bolus_list = list(boluses)
    landing = set(breakpoints)
    if isinstance(rate_fn, DosingSchedule):
        bolus_list.extend(rate_fn.bolus_events())
        landing.update(rate_fn.breakpoints())

    for time, _ in bolus_list:
        if time < t0 or time > t_end:
            logger.debug("Bolus at t=%.4g outside [%.4g, %.4g] ignored", time, t0, t_end)
    bolus_list = sorted((t, a) for t, a in bolus_list if t0 <= t <= t_end)
    landing.update(t for t, _ in bolus_list)
    landing = sorted(t for t in landing if t0 < t < t_end)
    landing.append(t_end)

    if isinstance(initial_state, CompartmentState):
        state = initial_state.to_vector()
    else:
        state = np.array(initial_state, dtype=float)

    trajectory = Trajectory(metadata={'integrator': config.to_dict(), 't0': t0, 't_end': t_end})
    recorder = _Recorder(trajectory, system, rate_fn)
    bolus_index = 0

    def apply_boluses(t: float, y: np.ndarray) -> Tuple[np.ndarray, int]:
        index = bolus_index
        while index < len(bolus_list) and bolus_list[index][0] <= t + _TIME_EPS:
            amount = bolus_list[index][1]
            y = y.copy()
            y[IDX_A1] += amount
            y[IDX_ADMINISTERED] += amount
            logger.debug("Bolus %.3f mg at t=%.4g", amount, t)
            index += 1
        return y, index

    state, bolus_index = apply_boluses(t0, state)

    output_interval = config.output_interval
    output_k = 1
    recorder.record(t0, state)

    t = t0
    proposal = config.dt_init
    steps = 0

    logger.debug(
        "Integrating [%.4g, %.4g] with %s (dt_init=%.3g)",
        t0, t_end, config.method.value, config.dt_init,
    )

    try:
        while t < t_end:
            if steps >= config.max_steps:
                raise NumericalDivergence(
                    f"Exceeded max_steps={config.max_steps} at t={t:.6g} min",
                    compartment=None, time=t, last_state=state,
                )

            target = landing[bisect_right(landing, t)]
            dt_try = min(proposal, target - t)
            if target - (t + dt_try) < _MERGE_FRACTION * dt_try:
                dt_try = target - t
            clipped = dt_try < proposal

            step_rate = _LeftLimitRate(rate_fn, t, t + dt_try)
            try:
                result = integrator.step(state, t, dt_try, step_rate)
            except StepRejected as e:
                raise NumericalDivergence(
                    f"Adaptive step failed after retries: {e}",
                    compartment=e.compartment, time=t, last_state=state,
                ) from e
            steps += 1

            reached_target = result.dt >= dt_try
            t_new = target if reached_target and dt_try == target - t else result.t
            new_state = result.state

            if output_interval is not None:
                f0 = system.derivative(state, step_rate(t))
                f1 = system.derivative(new_state, step_rate(t_new))
                while True:
                    t_out = t0 + output_k * output_interval
                    if t_out >= t_new - _TIME_EPS:
                        break
                    recorder.record(t_out, _hermite(t_out, t, t_new, state, new_state, f0, f1))
                    output_k += 1

            new_state, bolus_index = apply_boluses(t_new, new_state)

            if output_interval is None:
                recorder.record(t_new, new_state)
            else:
                t_out = t0 + output_k * output_interval
                if abs(t_out - t_new) <= _TIME_EPS:
                    recorder.record(t_new, new_state)
                    output_k += 1
                elif t_new >= t_end:
                    recorder.record(t_end, new_state)

            if clipped and reached_target:
                proposal = max(proposal, result.next_dt)
            else:
                proposal = result.next_dt
            state = new_state
            t = t_new

    except NumericalDivergence as e:
        trajectory.failure = FailureRecord.from_exception(e)
        logger.error("Integration stopped at t=%.6g min: %s", e.time, e)

    trajectory.metadata.update(integrator.stats())
    trajectory.metadata['final_state'] = tuple(float(x) for x in state)
    return trajectory
