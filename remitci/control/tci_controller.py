"""
Target-Controlled Infusion Controller
=====================================

Model-based TCI for plasma or effect-site targeting.

At every control tick (default every 10 s, plus every setpoint change):

1. Feed-forward. From the current state x the target concentration over
   a prediction horizon is, for a constant rate u held for one control
   interval Δ and zero afterwards,

       c(τ) = free(τ) + u·unit(τ)

   where free(τ) = C·Φ(τ)·x is the zero-input response and unit(τ) the
   response to 1 mg/min infused over [0, Δ]. Both come from matrix
   exponentials of the linear state-space form. c(τ) is linear in u, so
   the largest rate that does not overshoot the setpoint anywhere in the
   horizon is solved analytically:

       u = min over τ of (setpoint − free(τ)) / unit(τ)

   For plasma targeting the minimum sits at τ = Δ (setpoint reached at
   the end of the interval); for effect-site targeting at the effect-site
   peak.

2. The rate is clamped to [0, max_rate].

3. Correction. The interval is simulated with the configured integrator
   and the simulated concentration at Δ is compared with the analytic
   prediction. When they differ by more than the integrator's absolute
   tolerance, one linearised correction is applied and the rate clamped
   again. Paused and pump-limited rates are not corrected.

4. The next tick starts from the simulated state.

References:
-----------
- Shafer SL, Gregg KM. "Algorithms to rapidly achieve and maintain stable
  drug concentrations at the site of drug effect with a computer-controlled
  infusion pump." J Pharmacokinet Biopharm. 1992;20(2):147-69.
"""

import math
from bisect import bisect_right
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union, Dict, Any

import numpy as np
from scipy.linalg import expm

from ..dosing.schedule import DosingSchedule, ConstantRate
from ..models.pharmacokinetics.compartment_system import CompartmentSystem, CompartmentState
from ..solvers.base import IntegratorConfig
from ..solvers.integrate import integrate, create_integrator
from ..solvers.trajectory import Trajectory
from ..utils.exceptions import ConfigurationError, InvalidProtocol
from ..utils.logger import get_logger

logger = get_logger(__name__)


class TargetSite(Enum):
    """Compartment whose concentration is driven to the setpoint."""
    PLASMA = "plasma"
    EFFECT_SITE = "effect_site"

    @classmethod
    def parse(cls, value) -> 'TargetSite':
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ConfigurationError(f"Unknown target site: {value!r}")


@dataclass(frozen=True)
class TCIConfig:
    """
    TCI controller configuration.

    Attributes:
        target_site: Plasma or effect-site targeting
        control_interval: Time between rate updates (min)
        max_rate: Pump limit (mg/min)
        prediction_horizon: Look-ahead for overshoot checks (min)
        substeps: Prediction grid points per control interval
        correction: Apply the linearised correction against the integrator
    """
    target_site: TargetSite = TargetSite.EFFECT_SITE
    control_interval: float = 10.0 / 60.0
    max_rate: float = 20.0
    prediction_horizon: float = 10.0
    substeps: int = 10
    correction: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'target_site', TargetSite.parse(self.target_site))
        if not self.control_interval > 0:
            raise ConfigurationError(
                f"control_interval must be positive, got {self.control_interval}"
            )
        if not self.max_rate > 0:
            raise ConfigurationError(f"max_rate must be positive, got {self.max_rate}")
        if self.prediction_horizon < self.control_interval:
            raise ConfigurationError(
                "prediction_horizon must be at least one control interval"
            )
        if self.substeps < 1:
            raise ConfigurationError(f"substeps must be >= 1, got {self.substeps}")

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        values['target_site'] = self.target_site.value
        return values


class TargetProfile:
    """
    Piecewise-constant setpoint schedule.

    Args:
        steps: (time, setpoint) pairs in min and µg/mL, strictly increasing
            in time. The setpoint before the first step is zero.

    Raises:
        InvalidProtocol: For negative setpoints or non-increasing times

    Example:
        >>> profile = TargetProfile([(0.0, 0.8), (3.0, 0.6), (60.0, 0.5)])
        >>> profile.setpoint(10.0)
        0.6
    """

    def __init__(self, steps: Sequence[Tuple[float, float]]):
        steps = [(float(t), float(c)) for t, c in steps]
        if not steps:
            raise InvalidProtocol("Target profile needs at least one setpoint")
        for (t_prev, _), (t_next, _) in zip(steps, steps[1:]):
            if not t_next > t_prev:
                raise InvalidProtocol(
                    f"Setpoint times must increase strictly: {t_next} after {t_prev}"
                )
        for t, c in steps:
            if not (math.isfinite(t) and math.isfinite(c)) or c < 0:
                raise InvalidProtocol(f"Invalid setpoint {c} at t={t}")
        self.steps: Tuple[Tuple[float, float], ...] = tuple(steps)
        self._times = [t for t, _ in steps]

    @classmethod
    def constant(cls, setpoint: float, start: float = 0.0) -> 'TargetProfile':
        return cls([(start, setpoint)])

    def setpoint(self, t: float) -> float:
        index = bisect_right(self._times, t) - 1
        if index < 0:
            return 0.0
        return self.steps[index][1]

    __call__ = setpoint

    def change_times(self) -> Tuple[float, ...]:
        return tuple(self._times)

    def __repr__(self) -> str:
        return f"TargetProfile({list(self.steps)})"


@dataclass(frozen=True)
class ControlRecord:
    """
    One controller decision.

    Attributes:
        time: Tick time (min)
        setpoint: Setpoint in force (µg/mL)
        rate: Rate applied over the next interval (mg/min)
        feed_forward_rate: Rate before correction (mg/min)
        predicted: Analytic target concentration at the interval end
        simulated: Integrated target concentration at the interval end
        saturated: Rate was limited by max_rate
    """
    time: float
    setpoint: float
    rate: float
    feed_forward_rate: float
    predicted: float
    simulated: float
    saturated: bool


@dataclass
class TCIResult:
    """Trajectory of a TCI run plus the controller's decisions."""
    trajectory: Trajectory
    control_log: List[ControlRecord] = field(default_factory=list)

    def as_schedule(self) -> DosingSchedule:
        """Equivalent open-loop schedule of the applied rates."""
        return control_log_to_schedule(self.control_log, self.trajectory.end_time)


def control_log_to_schedule(control_log: Sequence[ControlRecord],
                            end_time: Optional[float]) -> DosingSchedule:
    """Turn controller decisions into touching ConstantRate phases."""
    phases = []
    for current, following in zip(control_log, list(control_log[1:]) + [None]):
        stop = following.time if following is not None else end_time
        if stop is None or not stop > current.time or current.rate <= 0:
            continue
        phases.append(ConstantRate(rate=current.rate, start=current.time, end=stop))
    return DosingSchedule(phases)


class TCIController:
    """
    Model-based TCI controller.

    The prediction matrices are computed once per parameter set; the
    controller holds no run state and can be reused for several runs.

    Args:
        system: Compartment system of the patient
        config: Controller configuration
        integrator_config: Integrator used to simulate each interval

    Example:
        >>> controller = TCIController(system, TCIConfig())
        >>> result = controller.run(TargetProfile.constant(1.0), t_end=60.0)
        >>> result.trajectory.completed
        True
    """

    def __init__(
        self,
        system: CompartmentSystem,
        config: Optional[TCIConfig] = None,
        integrator_config: Optional[IntegratorConfig] = None
    ):
        self.system = system
        self.config = config or TCIConfig()
        self.integrator_config = integrator_config or IntegratorConfig()

        if self.config.target_site is TargetSite.PLASMA:
            self._observe = np.array([1.0 / system.v1, 0.0, 0.0, 0.0])
        else:
            self._observe = np.array([0.0, 0.0, 0.0, 1.0])

        self._precompute()

    def _precompute(self) -> None:
        """Zero-input and unit-infusion responses on the prediction grid."""
        config = self.config
        A, B = self.system.state_matrices()
        n = A.shape[0]
        delta = config.control_interval / config.substeps
        n_points = int(math.ceil(config.prediction_horizon / delta))

        # expm([[A, B], [0, 0]]·δ) = [[Φ(δ), ∫₀^δ e^(As) ds·B], [0, 1]]
        augmented = np.zeros((n + 1, n + 1))
        augmented[:n, :n] = A
        augmented[:n, n] = B
        block = expm(augmented * delta)
        phi_delta = block[:n, :n]
        gamma_delta = block[:n, n]

        observe = self._observe
        free_rows = np.empty((n_points, n))
        unit = np.empty(n_points)

        phi = np.eye(n)
        response = np.zeros(n)
        for k in range(n_points):
            phi = phi_delta @ phi
            response = phi_delta @ response
            if k < config.substeps:
                response = response + gamma_delta
            free_rows[k] = observe @ phi
            unit[k] = observe @ response

        self._free_rows = free_rows
        self._unit = unit
        self._end_index = config.substeps - 1
        self._usable = unit > 1e-6 * np.max(unit)
        self.grid = delta * np.arange(1, n_points + 1)

        logger.debug(
            "TCI prediction grid: %d points over %.3g min (target=%s)",
            n_points, config.prediction_horizon, config.target_site.value,
        )

    def observe(self, state: Sequence[float]) -> float:
        """Concentration of the targeted compartment for a state vector."""
        return float(self._observe @ np.asarray(state, dtype=float)[:4])

    def predict(self, state: Sequence[float], rate: float) -> np.ndarray:
        """Target concentration on the prediction grid for a rate held one interval."""
        x = np.asarray(state, dtype=float)[:4]
        return self._free_rows @ x + rate * self._unit

    def feed_forward_rate(self, state: Sequence[float], setpoint: float) -> float:
        """
        Largest rate (mg/min) with no predicted overshoot of the setpoint.

        Unclamped; negative when the zero-input response already overshoots.
        """
        x = np.asarray(state, dtype=float)[:4]
        free = self._free_rows[self._usable] @ x
        return float(np.min((setpoint - free) / self._unit[self._usable]))

    def _clamp(self, rate: float) -> Tuple[float, bool]:
        if rate >= self.config.max_rate:
            return self.config.max_rate, True
        return max(rate, 0.0), False

    def run(
        self,
        profile: Union[TargetProfile, float],
        t_end: float,
        initial_state: Optional[CompartmentState] = None,
        t0: float = 0.0
    ) -> TCIResult:
        """
        Simulate a TCI run from t0 to t_end.

        Args:
            profile: Setpoint schedule, or a constant setpoint
            t_end: End of the run (min)
            initial_state: State at t0 (drug-free if None)
            t0: Start time (min)

        Returns:
            TCIResult with the full trajectory and one ControlRecord per tick.
            A numerical failure ends the run early and is recorded on the
            trajectory.
        """
        if not isinstance(profile, TargetProfile):
            profile = TargetProfile.constant(float(profile), start=t0)
        if not t_end > t0:
            raise ConfigurationError(f"Invalid TCI window [{t0}, {t_end}]")

        state = (initial_state or CompartmentState()).to_vector()
        trajectory = Trajectory(metadata={
            'tci': self.config.to_dict(),
            'integrator': self.integrator_config.to_dict(),
            't0': t0,
            't_end': t_end,
        })
        result = TCIResult(trajectory=trajectory)
        integrator = create_integrator(self.system, self.integrator_config)
        interval = self.config.control_interval

        ticks = self.tick_times(profile, t0, t_end)
        for t, t_next in zip(ticks, ticks[1:]):
            setpoint = profile.setpoint(t)

            ff_rate = self.feed_forward_rate(state, setpoint)
            rate, saturated = self._clamp(ff_rate)
            predicted = float(self._free_rows[self._end_index] @ state[:4]
                              + rate * self._unit[self._end_index])

            segment = self._simulate(integrator, state, t, t_next, rate)
            simulated = self.observe(segment.metadata['final_state'])

            # paused and pump-limited rates are kept as they are
            error = predicted - simulated
            if (self.config.correction and 0 < rate < self.config.max_rate
                    and segment.completed
                    and abs(t_next - t - interval) < 1e-9
                    and abs(error) > self.integrator_config.abs_tol):
                corrected, corrected_saturated = self._clamp(
                    rate + error / self._unit[self._end_index]
                )
                if abs(corrected - rate) > 1e-9 * max(1.0, rate):
                    logger.debug("TCI correction at t=%.4g: %.5g -> %.5g mg/min",
                                 t, rate, corrected)
                    rate, saturated = corrected, corrected_saturated
                    segment = self._simulate(integrator, state, t, t_next, rate)
                    simulated = self.observe(segment.metadata['final_state'])

            result.control_log.append(ControlRecord(
                time=t, setpoint=setpoint, rate=rate, feed_forward_rate=ff_rate,
                predicted=predicted, simulated=simulated, saturated=saturated,
            ))

            samples = list(segment)
            if segment.completed and t_next < t_end:
                # the next tick records this time with its own rate
                samples = samples[:-1]
            for sample in samples:
                trajectory.append(sample)

            if not segment.completed:
                trajectory.failure = segment.failure
                logger.error("TCI run stopped at t=%.4g min", segment.failure.time)
                break

            state = np.array(segment.metadata['final_state'])

        trajectory.metadata['ticks'] = len(result.control_log)
        return result

    def tick_times(self, profile: TargetProfile, t0: float, t_end: float) -> List[float]:
        """
        Rate update times from t0, closed by t_end.

        Ticks fall every control interval and at every setpoint change
        inside (t0, t_end). A regular tick closer than 1e-9 min to a
        setpoint change is replaced by the change.
        """
        interval = self.config.control_interval
        changes = [c for c in profile.change_times() if t0 < c < t_end]
        n = int(math.ceil((t_end - t0) / interval - 1e-9))
        ticks = [t0 + k * interval for k in range(n)]
        ticks = [t for t in ticks
                 if t == t0 or (t < t_end - 1e-9
                                and all(abs(t - c) >= 1e-9 for c in changes))]
        ticks = sorted(set(ticks + changes))
        return ticks + [t_end]

    def _simulate(self, integrator, state: np.ndarray, t: float, t_next: float,
                  rate: float) -> Trajectory:
        return integrate(
            self.system, state, t, t_next,
            lambda _t: rate,
            config=self.integrator_config,
            integrator=integrator,
        )
