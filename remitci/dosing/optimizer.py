"""
Bolus + Continuous Infusion Protocol Optimisation
=================================================

Two helpers for open-loop protocols built from a loading bolus followed by
a continuous infusion (clinical rates in mg/kg/h):

1. optimize_continuous_rate
   Grid search for the infusion rate whose effect-site concentration at
   ``target_time`` is closest to the target. A coarse pass (0.1 mg/kg/h)
   over the allowed range is refined by a fine pass (0.02 mg/kg/h) around
   the coarse optimum.

2. generate_step_down_protocol
   Runs the protocol in short chunks. Whenever Ce reaches
   ``upper_threshold_ratio × target_ce`` and at least
   ``adjustment_interval`` minutes have passed since the last change, the
   rate is multiplied by ``reduction_factor`` (never below
   ``minimum_rate``).

Performance of a step-down run is summarised over the maintenance window
(t ≥ maintenance_start): mean absolute deviation from target, the share of
samples within ±10 % of target, peak and final Ce.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any

import numpy as np

from .schedule import DosingSchedule, Bolus, ConstantRate
from ..evaluation.performance import calculate_time_in_target
from ..models.pharmacokinetics.compartment_system import CompartmentSystem, CompartmentState, IDX_CE
from ..solvers.base import IntegratorConfig
from ..solvers.integrate import integrate, create_integrator
from ..solvers.trajectory import Trajectory
from ..utils.exceptions import ConfigurationError, InvalidProtocol
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProtocolSettings:
    """
    Protocol engine settings.

    Attributes:
        target_ce: Target effect-site concentration (µg/mL)
        upper_threshold_ratio: Step-down trigger as a multiple of target_ce
        reduction_factor: Rate multiplier applied at each step-down
        time_step: Chunk length between threshold checks (min)
        duration: Simulated protocol length (min)
        target_time: Time at which the optimiser matches target_ce (min)
        adjustment_interval: Minimum time between step-downs (min)
        minimum_rate: Floor for stepped-down rates (mg/kg/h)
        rate_min: Lower end of the rate search (mg/kg/h)
        rate_max: Upper end of the rate search (mg/kg/h)
        coarse_step: Coarse search resolution (mg/kg/h)
        fine_step: Fine search resolution (mg/kg/h)
        maintenance_start: Start of the performance window (min)
    """
    target_ce: float = 1.0
    upper_threshold_ratio: float = 1.2
    reduction_factor: float = 0.70
    time_step: float = 0.1
    duration: float = 120.0
    target_time: float = 20.0
    adjustment_interval: float = 5.0
    minimum_rate: float = 0.1
    rate_min: float = 0.1
    rate_max: float = 6.0
    coarse_step: float = 0.1
    fine_step: float = 0.02
    maintenance_start: float = 60.0

    def __post_init__(self):
        if not self.target_ce > 0:
            raise ConfigurationError(f"target_ce must be positive, got {self.target_ce}")
        if not 0 < self.reduction_factor < 1:
            raise ConfigurationError(
                f"reduction_factor must lie in (0, 1), got {self.reduction_factor}"
            )
        if not (self.time_step > 0 and self.duration > 0 and self.target_time > 0):
            raise ConfigurationError("time_step, duration and target_time must be positive")
        if not 0 < self.rate_min < self.rate_max:
            raise ConfigurationError(
                f"Invalid rate search range [{self.rate_min}, {self.rate_max}]"
            )
        if not (0 < self.fine_step <= self.coarse_step):
            raise ConfigurationError("Need 0 < fine_step <= coarse_step")

    @property
    def upper_threshold(self) -> float:
        """Absolute step-down trigger concentration (µg/mL)."""
        return self.upper_threshold_ratio * self.target_ce


@dataclass
class ProtocolResult:
    """
    Result of the continuous-rate optimisation.

    Attributes:
        bolus_mg: Loading bolus (mg)
        rate_mg_kg_h: Optimal continuous rate (mg/kg/h)
        rate_mg_min: Same rate in mg/min
        predicted_ce: Ce at target_time with that rate (µg/mL)
        target_ce: Target Ce (µg/mL)
        target_time: Matching time (min)
        schedule: Bolus + infusion schedule up to target_time
        evaluations: Number of simulations run
    """
    bolus_mg: float
    rate_mg_kg_h: float
    rate_mg_min: float
    predicted_ce: float
    target_ce: float
    target_time: float
    schedule: DosingSchedule
    evaluations: int = 0

    @property
    def error(self) -> float:
        return self.predicted_ce - self.target_ce


@dataclass(frozen=True)
class RateAdjustment:
    """One threshold step-down (rates in mg/kg/h)."""
    time: float
    old_rate: float
    new_rate: float
    ce: float


@dataclass
class ProtocolPerformance:
    """Maintenance-window summary of a step-down run."""
    final_ce: float
    avg_deviation: float
    target_accuracy: float
    total_adjustments: int
    max_ce: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StepDownResult:
    """Trajectory, step-downs and equivalent schedule of a step-down run."""
    trajectory: Trajectory
    adjustments: List[RateAdjustment] = field(default_factory=list)
    schedule: Optional[DosingSchedule] = None
    performance: Optional[ProtocolPerformance] = None


def _check_protocol_inputs(bolus_mg: float, weight: float) -> None:
    if not (math.isfinite(bolus_mg) and bolus_mg >= 0):
        raise InvalidProtocol(f"Bolus dose must be non-negative, got {bolus_mg}")
    if not (math.isfinite(weight) and weight > 0):
        raise InvalidProtocol(f"Body weight must be positive, got {weight}")


def _search_grid(low: float, high: float, step: float) -> np.ndarray:
    n = int(math.floor((high - low) / step + 1e-9))
    return np.round(low + step * np.arange(n + 1), 10)


def _ce_at(system: CompartmentSystem, integrator, config: IntegratorConfig,
           bolus_mg: float, rate_mg_min: float, t_end: float) -> float:
    trajectory = integrate(
        system, CompartmentState(), 0.0, t_end,
        lambda _t: rate_mg_min,
        config=config,
        boluses=[(0.0, bolus_mg)] if bolus_mg > 0 else (),
        integrator=integrator,
    )
    trajectory.raise_for_failure()
    return float(trajectory.metadata['final_state'][IDX_CE])


def optimize_continuous_rate(
    system: CompartmentSystem,
    bolus_mg: float,
    weight: float,
    target_ce: Optional[float] = None,
    target_time: Optional[float] = None,
    settings: Optional[ProtocolSettings] = None,
    integrator_config: Optional[IntegratorConfig] = None
) -> ProtocolResult:
    """
    Find the continuous rate that brings Ce to target at target_time.

    Args:
        system: Compartment system of the patient
        bolus_mg: Loading bolus at t=0 (mg)
        weight: Body weight for rate conversion (kg)
        target_ce: Target Ce (µg/mL), settings.target_ce if None
        target_time: Matching time (min), settings.target_time if None
        settings: Protocol settings
        integrator_config: Integrator used for each candidate

    Returns:
        ProtocolResult

    Raises:
        InvalidProtocol: For a negative bolus or non-positive weight
        NumericalDivergence: If a candidate simulation fails

    Example:
        >>> result = optimize_continuous_rate(system, bolus_mg=8.4, weight=70.0)
        >>> 0.1 <= result.rate_mg_kg_h <= 6.0
        True
    """
    settings = settings or ProtocolSettings()
    target_ce = settings.target_ce if target_ce is None else target_ce
    target_time = settings.target_time if target_time is None else target_time
    _check_protocol_inputs(bolus_mg, weight)
    if not (target_ce > 0 and target_time > 0):
        raise InvalidProtocol("target_ce and target_time must be positive")

    config = integrator_config or IntegratorConfig()
    integrator = create_integrator(system, config)
    evaluated: Dict[float, float] = {}

    def error_for(rate_mg_kg_h: float) -> float:
        if rate_mg_kg_h not in evaluated:
            ce = _ce_at(system, integrator, config, bolus_mg,
                        rate_mg_kg_h * weight / 60.0, target_time)
            evaluated[rate_mg_kg_h] = ce
        return abs(evaluated[rate_mg_kg_h] - target_ce)

    coarse = _search_grid(settings.rate_min, settings.rate_max, settings.coarse_step)
    best = min(coarse, key=error_for)

    low = max(settings.rate_min, best - settings.coarse_step)
    high = min(settings.rate_max, best + settings.coarse_step)
    fine = _search_grid(low, high, settings.fine_step)
    best = float(min(np.append(fine, best), key=error_for))

    rate_mg_min = best * weight / 60.0
    phases = [ConstantRate(rate=rate_mg_min, start=0.0, end=target_time)]
    if bolus_mg > 0:
        phases.insert(0, Bolus(time=0.0, amount=bolus_mg))

    logger.info(
        "Optimal rate %.2f mg/kg/h (Ce=%.3f at %.1f min, target %.3f, %d simulations)",
        best, evaluated[best], target_time, target_ce, len(evaluated),
    )
    return ProtocolResult(
        bolus_mg=bolus_mg,
        rate_mg_kg_h=best,
        rate_mg_min=rate_mg_min,
        predicted_ce=evaluated[best],
        target_ce=target_ce,
        target_time=target_time,
        schedule=DosingSchedule(phases),
        evaluations=len(evaluated),
    )


def evaluate_protocol_performance(
    trajectory: Trajectory,
    adjustments: List[RateAdjustment],
    settings: ProtocolSettings
) -> ProtocolPerformance:
    """Summary metrics over the maintenance window (t ≥ maintenance_start)."""
    times = trajectory.time
    ce = trajectory.ce
    window = times >= settings.maintenance_start
    if not np.any(window):
        return ProtocolPerformance(
            final_ce=float(ce[-1]) if ce.size else 0.0,
            avg_deviation=math.inf,
            target_accuracy=0.0,
            total_adjustments=len(adjustments),
            max_ce=0.0,
        )
    maintenance = ce[window]
    return ProtocolPerformance(
        final_ce=float(ce[-1]),
        avg_deviation=float(np.mean(np.abs(maintenance - settings.target_ce))),
        target_accuracy=calculate_time_in_target(maintenance, settings.target_ce, 0.10),
        total_adjustments=len(adjustments),
        max_ce=float(np.max(maintenance)),
    )


def generate_step_down_protocol(
    system: CompartmentSystem,
    bolus_mg: float,
    initial_rate_mg_kg_h: float,
    weight: float,
    settings: Optional[ProtocolSettings] = None,
    integrator_config: Optional[IntegratorConfig] = None
) -> StepDownResult:
    """
    Simulate bolus + infusion with threshold-triggered rate reductions.

    Args:
        system: Compartment system of the patient
        bolus_mg: Loading bolus at t=0 (mg)
        initial_rate_mg_kg_h: Starting continuous rate (mg/kg/h)
        weight: Body weight for rate conversion (kg)
        settings: Protocol settings
        integrator_config: Integrator used for each chunk

    Returns:
        StepDownResult. A numerical failure ends the run early; the partial
        trajectory carries the FailureRecord.
    """
    settings = settings or ProtocolSettings()
    _check_protocol_inputs(bolus_mg, weight)
    if not (math.isfinite(initial_rate_mg_kg_h) and initial_rate_mg_kg_h >= 0):
        raise InvalidProtocol(f"Initial rate must be non-negative, got {initial_rate_mg_kg_h}")

    config = integrator_config or IntegratorConfig()
    integrator = create_integrator(system, config)
    trajectory = Trajectory(metadata={
        'protocol': asdict(settings),
        'bolus_mg': bolus_mg,
        'initial_rate_mg_kg_h': initial_rate_mg_kg_h,
        'weight': weight,
    })

    adjustments: List[RateAdjustment] = []
    rate_segments = [(0.0, initial_rate_mg_kg_h)]
    current_rate = initial_rate_mg_kg_h
    last_adjustment = 0.0
    state = CompartmentState().to_vector()
    n_chunks = int(math.ceil(settings.duration / settings.time_step - 1e-9))

    for k in range(n_chunks):
        t = k * settings.time_step
        t_next = min((k + 1) * settings.time_step, settings.duration)
        rate_mg_min = current_rate * weight / 60.0

        segment = integrate(
            system, state, t, t_next,
            lambda _t, r=rate_mg_min: r,
            config=config,
            boluses=[(0.0, bolus_mg)] if k == 0 and bolus_mg > 0 else (),
            integrator=integrator,
        )
        samples = list(segment)
        if segment.completed and k < n_chunks - 1:
            samples = samples[:-1]
        for sample in samples:
            trajectory.append(sample)

        if not segment.completed:
            trajectory.failure = segment.failure
            logger.error("Step-down protocol stopped at t=%.4g min", segment.failure.time)
            break

        state = np.array(segment.metadata['final_state'])
        ce = float(state[IDX_CE])

        if (ce >= settings.upper_threshold
                and t_next - last_adjustment >= settings.adjustment_interval
                and current_rate > settings.minimum_rate):
            new_rate = max(settings.minimum_rate, current_rate * settings.reduction_factor)
            adjustments.append(RateAdjustment(time=t_next, old_rate=current_rate,
                                              new_rate=new_rate, ce=ce))
            logger.info("%.1f min: Ce=%.3f >= %.3f, rate %.2f -> %.2f mg/kg/h",
                        t_next, ce, settings.upper_threshold, current_rate, new_rate)
            current_rate = new_rate
            last_adjustment = t_next
            rate_segments.append((t_next, new_rate))

    end = trajectory.end_time if trajectory.end_time is not None else 0.0
    phases = [Bolus(time=0.0, amount=bolus_mg)] if bolus_mg > 0 else []
    for (start, rate), following in zip(rate_segments, rate_segments[1:] + [(end, None)]):
        stop = following[0]
        if stop > start and rate > 0:
            phases.append(ConstantRate.from_mg_kg_h(rate, start, stop, weight))

    result = StepDownResult(
        trajectory=trajectory,
        adjustments=adjustments,
        schedule=DosingSchedule(phases),
    )
    if len(trajectory):
        result.performance = evaluate_protocol_performance(trajectory, adjustments, settings)
    return result
