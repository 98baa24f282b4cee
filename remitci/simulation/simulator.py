"""
Simulation Facade
=================

One patient, one parameter derivation, any number of runs.

The Simulator derives the Masui parameters and the compartment system once
from the covariates and then runs open-loop protocols, TCI profiles and
protocol-engine helpers against them. Every run returns a
SimulationResult bundling the trajectory, the detected events, the
parameters used and the plausibility warnings collected on the way.

Example:
--------
    >>> simulator = Simulator(PatientCovariates(age=55, weight=70, height=170))
    >>> schedule = DosingSchedule([Bolus(0.0, 8.4),
    ...                            ConstantRate.from_mg_kg_h(1.0, 0.0, 60.0, 70.0)])
    >>> result = simulator.run_protocol(schedule, t_end=120.0)
    >>> [e.kind for e in result.events][:1]
    ['induction:rising']
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

import pandas as pd

from ..control.tci_controller import TCIController, TargetProfile, ControlRecord
from ..dosing.optimizer import (
    optimize_continuous_rate,
    generate_step_down_protocol,
    ProtocolResult,
    RateAdjustment,
)
from ..dosing.schedule import DosingSchedule
from ..evaluation.events import EventDetector, CriticalEvent, events_to_dataframe
from ..evaluation.performance import TrackingMetrics, evaluate_tracking
from ..models.pharmacokinetics.base import PatientCovariates, PKParameters
from ..models.pharmacokinetics.compartment_system import CompartmentState
from ..models.pharmacokinetics.masui_model import MasuiModel, Ke0Estimate
from ..solvers.integrate import integrate
from ..solvers.trajectory import Trajectory
from ..utils.config import SimulationConfig
from ..utils.exceptions import ConfigurationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SimulationResult:
    """
    Outcome of one simulation run.

    Attributes:
        trajectory: Sampled state and concentrations (partial on failure)
        events: Threshold crossings, ordered by time
        pk_parameters: Parameters the run used
        ke0_estimate: ke0 with both derivation routes
        warnings: Plausibility warnings from parameter derivation
        control_log: TCI decisions (empty for open-loop runs)
        adjustments: Step-down rate changes (protocol engine runs only)
    """
    trajectory: Trajectory
    events: List[CriticalEvent]
    pk_parameters: PKParameters
    ke0_estimate: Ke0Estimate
    warnings: List[str] = field(default_factory=list)
    control_log: List[ControlRecord] = field(default_factory=list)
    adjustments: List[RateAdjustment] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.trajectory.completed

    @property
    def failure(self):
        return self.trajectory.failure

    def raise_for_failure(self) -> None:
        self.trajectory.raise_for_failure()

    def events_dataframe(self) -> pd.DataFrame:
        return events_to_dataframe(self.events)

    def tracking(self, target: Union[float, TargetProfile], start_time: float = 0.0,
                 variable: str = 'ce') -> TrackingMetrics:
        """Varvel tracking metrics of this run against a target."""
        return evaluate_tracking(self.trajectory, target, variable=variable,
                                 start_time=start_time)


class Simulator:
    """
    Remimazolam PK/PD simulator for one patient.

    Args:
        covariates: Validated patient covariates
        config: Simulation configuration (defaults if None)

    Raises:
        InvalidCovariate: Implausible covariates with strict_plausibility
        Ke0OutOfRange: Out-of-band ke0 with strict_plausibility
        NonPhysiologicalParameter: If a derived parameter is not positive
    """

    def __init__(self, covariates: PatientCovariates, config: Optional[SimulationConfig] = None):
        self.config = config or SimulationConfig()
        self.covariates = covariates
        self.model = MasuiModel(covariates, strict=self.config.strict_plausibility)
        self.system = self.model.system
        self.detector = EventDetector(self.config.thresholds)

        for message in self.model.warnings:
            logger.debug("Plausibility warning: %s", message)

    @property
    def pk_parameters(self) -> PKParameters:
        return self.model.pk

    def _result(self, trajectory: Trajectory, **extra) -> SimulationResult:
        return SimulationResult(
            trajectory=trajectory,
            events=self.detector.detect(trajectory),
            pk_parameters=self.model.pk,
            ke0_estimate=self.model.ke0_estimate,
            warnings=list(self.model.warnings),
            **extra,
        )

    def run_protocol(
        self,
        schedule: DosingSchedule,
        t_end: Optional[float] = None,
        initial_state: Optional[CompartmentState] = None,
        t0: float = 0.0
    ) -> SimulationResult:
        """
        Simulate an open-loop dosing schedule.

        Args:
            schedule: Bolus and infusion phases
            t_end: End time (min); the schedule's end time if None
            initial_state: State at t0 (drug-free if None)
            t0: Start time (min)
        """
        if t_end is None:
            t_end = schedule.end_time
        if not t_end > t0:
            raise ConfigurationError(f"Run end {t_end} must be after start {t0}")

        trajectory = integrate(
            self.system,
            initial_state or CompartmentState(),
            t0, t_end,
            schedule,
            config=self.config.integrator,
        )
        logger.info("Protocol run finished: %s", trajectory)
        return self._result(trajectory)

    def run_tci(
        self,
        profile: Union[TargetProfile, float],
        t_end: float,
        initial_state: Optional[CompartmentState] = None,
        t0: float = 0.0
    ) -> SimulationResult:
        """Closed-loop TCI run towards a setpoint profile."""
        controller = TCIController(self.system, self.config.tci, self.config.integrator)
        tci = controller.run(profile, t_end, initial_state=initial_state, t0=t0)
        logger.info("TCI run finished: %s (%d ticks)", tci.trajectory, len(tci.control_log))
        return self._result(tci.trajectory, control_log=tci.control_log)

    def optimize_protocol(self, bolus_mg: float, target_ce: Optional[float] = None,
                          target_time: Optional[float] = None) -> ProtocolResult:
        """Continuous rate after a bolus that reaches target Ce at target_time."""
        return optimize_continuous_rate(
            self.system, bolus_mg, self.covariates.weight,
            target_ce=target_ce, target_time=target_time,
            settings=self.config.protocol,
            integrator_config=self.config.integrator,
        )

    def run_step_down(self, bolus_mg: float, initial_rate_mg_kg_h: float) -> SimulationResult:
        """Bolus + infusion with threshold-triggered step-downs."""
        step_down = generate_step_down_protocol(
            self.system, bolus_mg, initial_rate_mg_kg_h, self.covariates.weight,
            settings=self.config.protocol,
            integrator_config=self.config.integrator,
        )
        return self._result(step_down.trajectory, adjustments=step_down.adjustments)
