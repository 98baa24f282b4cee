"""
Simulation module for remitci
=============================

Contains:
    - simulator: Simulator facade and SimulationResult
    - batch: concurrent independent runs and patient populations
"""

from .simulator import Simulator, SimulationResult
from .batch import SimulationRequest, run_batch, run_request, create_patient_population
from ..solvers.trajectory import Trajectory, TrajectorySample, FailureRecord

__all__ = [
    "Simulator",
    "SimulationResult",
    "SimulationRequest",
    "run_batch",
    "run_request",
    "create_patient_population",
    "Trajectory",
    "TrajectorySample",
    "FailureRecord",
]
