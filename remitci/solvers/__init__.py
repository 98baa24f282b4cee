"""
Solvers module for remitci
==========================

Numerical integrators for the compartment system and the full-run loop.

Contains:
    - base: IntegratorConfig, IntegrationMethod, Integrator interface
    - fixed_step: FixedEuler, FixedRK4
    - adaptive: AdaptiveRK45 (Dormand-Prince 5(4))
    - stiff: StiffAware (LSODA)
    - integrate: full-run integration with bolus handling and resampling
    - trajectory: Trajectory, TrajectorySample, FailureRecord
"""

from .base import IntegratorConfig, IntegrationMethod, Integrator, StepResult
from .fixed_step import FixedEuler, FixedRK4
from .adaptive import AdaptiveRK45
from .stiff import StiffAware
from .trajectory import Trajectory, TrajectorySample, FailureRecord
from .integrate import integrate, create_integrator

__all__ = [
    "IntegratorConfig",
    "IntegrationMethod",
    "Integrator",
    "StepResult",
    "FixedEuler",
    "FixedRK4",
    "AdaptiveRK45",
    "StiffAware",
    "Trajectory",
    "TrajectorySample",
    "FailureRecord",
    "integrate",
    "create_integrator",
]
