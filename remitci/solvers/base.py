"""
Integrator Base Classes
=======================

Common configuration and interface for the numerical integrators that
advance the compartment system.

Method variants:
    FIXED_EULER    explicit Euler, fixed step
    FIXED_RK4      classical Runge-Kutta, fixed step
    ADAPTIVE_RK45  Dormand-Prince 5(4) embedded pair with step control
    STIFF_AWARE    LSODA (automatic Adams/BDF switching) via scipy
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, NamedTuple, Optional, Dict, Any

import numpy as np

from ..models.pharmacokinetics.compartment_system import CompartmentSystem
from ..utils.exceptions import ConfigurationError, check_finite_state

RateFunction = Callable[[float], float]


class IntegrationMethod(Enum):
    """Available integration methods."""
    FIXED_EULER = "fixed_euler"
    FIXED_RK4 = "fixed_rk4"
    ADAPTIVE_RK45 = "adaptive_rk45"
    STIFF_AWARE = "stiff_aware"

    @classmethod
    def parse(cls, value) -> 'IntegrationMethod':
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ConfigurationError(
            f"Unknown integration method: {value!r}. "
            f"Choose from {[m.value for m in cls]}"
        )

    @property
    def is_adaptive(self) -> bool:
        return self in (IntegrationMethod.ADAPTIVE_RK45, IntegrationMethod.STIFF_AWARE)


@dataclass(frozen=True)
class IntegratorConfig:
    """
    Integrator configuration.

    Attributes:
        method: Integration method
        dt_init: Fixed step, or initial step for adaptive methods (min)
        abs_tol: Absolute tolerance on concentrations (µg/mL)
        rel_tol: Relative tolerance
        max_retries: Step halvings before an adaptive step is rejected
        min_step: Smallest step an adaptive method may try (min)
        max_step: Largest step an adaptive method may propose (min)
        output_interval: Fixed sampling interval for the trajectory (min);
            None records every accepted step
        max_steps: Upper bound on accepted steps per run
    """
    method: IntegrationMethod = IntegrationMethod.ADAPTIVE_RK45
    dt_init: float = 0.005
    abs_tol: float = 1e-5
    rel_tol: float = 1e-4
    max_retries: int = 10
    min_step: float = 1e-6
    max_step: float = 1.0
    output_interval: Optional[float] = None
    max_steps: int = 1_000_000

    def __post_init__(self):
        object.__setattr__(self, 'method', IntegrationMethod.parse(self.method))
        if not self.dt_init > 0:
            raise ConfigurationError(f"dt_init must be positive, got {self.dt_init}")
        if not (self.abs_tol > 0 and self.rel_tol >= 0):
            raise ConfigurationError(
                f"Invalid tolerances abs_tol={self.abs_tol}, rel_tol={self.rel_tol}"
            )
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if not (0 < self.min_step <= self.max_step):
            raise ConfigurationError(
                f"Invalid step bounds min_step={self.min_step}, max_step={self.max_step}"
            )
        if self.output_interval is not None and not self.output_interval > 0:
            raise ConfigurationError(
                f"output_interval must be positive, got {self.output_interval}"
            )
        if self.max_steps <= 0:
            raise ConfigurationError(f"max_steps must be positive, got {self.max_steps}")

    def replace(self, **changes) -> 'IntegratorConfig':
        values = asdict(self)
        values.update(changes)
        return IntegratorConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        values['method'] = self.method.value
        return values


class StepResult(NamedTuple):
    """
    Outcome of one accepted step.

    Attributes:
        state: New state vector (clamped)
        t: New time (min)
        dt: Step actually taken (min)
        next_dt: Proposed size of the next step (min)
    """
    state: np.ndarray
    t: float
    dt: float
    next_dt: float


class Integrator(ABC):
    """
    Abstract base class for integrators.

    An integrator is bound to one compartment system and one configuration.
    It holds no simulation state, only counters of accepted and rejected
    steps.
    """

    method: IntegrationMethod

    def __init__(self, system: CompartmentSystem, config: Optional[IntegratorConfig] = None):
        self.system = system
        self.config = config or IntegratorConfig(method=self.method)
        self.accepted_steps = 0
        self.rejected_steps = 0

    @abstractmethod
    def _advance(self, state: np.ndarray, t: float, dt: float,
                 rate_fn: RateFunction) -> StepResult:
        """Advance the unclamped state by one step."""
        pass

    def step(self, state: np.ndarray, t: float, dt: float,
             rate_fn: RateFunction) -> StepResult:
        """
        Advance the state by one step starting at time t.

        Args:
            state: Current state vector
            t: Current time (min)
            dt: Requested step (min)
            rate_fn: Infusion rate (mg/min) as a function of time

        Returns:
            StepResult with the clamped new state

        Raises:
            NumericalDivergence: If the new state is not finite
            StepRejected: If an adaptive method cannot meet its tolerance
        """
        state = np.asarray(state, dtype=float)
        result = self._advance(state, t, dt, rate_fn)
        check_finite_state(result.state, result.t, last_state=state)
        self.accepted_steps += 1
        return result._replace(state=self.system.clamp(result.state))

    def derivative(self, state: np.ndarray, t: float, rate_fn: RateFunction) -> np.ndarray:
        return self.system.derivative(state, rate_fn(t))

    def stats(self) -> Dict[str, Any]:
        return {
            'method': self.method.value,
            'accepted_steps': self.accepted_steps,
            'rejected_steps': self.rejected_steps,
        }
