"""
Custom Exceptions for Remimazolam TCI Simulation
=================================================

Defines the exception classes raised by the simulation core.

Exception Hierarchy:
--------------------
RemiTCIError (base)
├── ModelError
│   ├── InvalidCovariate
│   ├── NonPhysiologicalParameter
│   └── Ke0OutOfRange
├── DosingError
│   └── InvalidProtocol
├── IntegrationError
│   ├── StepRejected
│   └── NumericalDivergence
└── ConfigurationError

Validation errors (InvalidCovariate, InvalidProtocol) are raised before a run
starts. NonPhysiologicalParameter is always raised. Ke0OutOfRange and
out-of-range covariates are logged as warnings unless strict checking is
requested. Numerical errors end a run; the partial trajectory is kept
together with a failure record.

Usage:
------
    from remitci.utils.exceptions import InvalidCovariate

    if height <= 0:
        raise InvalidCovariate(f"Invalid height: {height}. Must be positive.")
"""

import math
from typing import Optional, Sequence


class RemiTCIError(Exception):
    """Base exception for all remitci errors."""
    pass


# ============================================================================
# Model Errors
# ============================================================================

class ModelError(RemiTCIError):
    """Base exception for PK/PD model errors."""
    pass


class InvalidCovariate(ModelError):
    """
    Exception raised for malformed patient covariates.

    Examples:
        - Non-positive age, weight or height
        - Sex or ASA class outside {0, 1}
        - Covariate outside the clinical range (strict mode only)
    """
    pass


class NonPhysiologicalParameter(ModelError):
    """
    Exception raised when a derived PK parameter is not strictly positive.

    Examples:
        - Negative V3 for an extreme age
        - Negative clearance from the ASA/sex correction
    """

    def __init__(self, message: str, parameter: Optional[str] = None,
                 value: Optional[float] = None):
        super().__init__(message)
        self.parameter = parameter
        self.value = value


class Ke0OutOfRange(ModelError):
    """
    Exception raised when the effect-site rate constant leaves its sanity band.

    The offending value is carried on the exception so a caller can still
    use it.
    """

    def __init__(self, message: str, value: float):
        super().__init__(message)
        self.value = value


# ============================================================================
# Dosing Errors
# ============================================================================

class DosingError(RemiTCIError):
    """Base exception for dosing protocol errors."""
    pass


class InvalidProtocol(DosingError):
    """
    Exception raised for malformed dosing protocols.

    Examples:
        - Overlapping infusion phases
        - Negative rate or bolus amount
        - Phase ending before it starts
    """
    pass


# ============================================================================
# Integration Errors
# ============================================================================

class IntegrationError(RemiTCIError):
    """Base exception for numerical integration errors."""
    pass


class StepRejected(IntegrationError):
    """
    Exception raised when an adaptive step keeps failing its error test.

    Raised after the configured number of step-size halvings.
    """

    def __init__(self, message: str, time: float, dt: float, error_norm: float,
                 compartment: Optional[str] = None):
        super().__init__(message)
        self.time = time
        self.dt = dt
        self.error_norm = error_norm
        self.compartment = compartment


class NumericalDivergence(IntegrationError):
    """
    Exception raised when the state becomes non-finite or unbounded.

    Attributes:
        compartment: Name of the first offending state variable
        time: Simulated time (min) at which divergence was detected
        last_state: Last valid state vector before the failing step
    """

    def __init__(self, message: str, compartment: Optional[str], time: float,
                 last_state: Optional[Sequence[float]] = None):
        super().__init__(message)
        self.compartment = compartment
        self.time = time
        self.last_state = None if last_state is None else tuple(float(x) for x in last_state)


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(RemiTCIError):
    """
    Exception raised for configuration errors.

    Examples:
        - Unknown configuration keys
        - Invalid tolerance or step bounds
        - Unknown integration method name
    """
    pass


# ============================================================================
# Helper Functions
# ============================================================================

STATE_NAMES = ('A1', 'A2', 'A3', 'Ce', 'eliminated', 'administered')


def check_finite_state(state: Sequence[float], time: float,
                       last_state: Optional[Sequence[float]] = None,
                       bound: float = 1e12) -> None:
    """
    Check a state vector for non-finite or unbounded entries.

    Args:
        state: State vector to check
        time: Simulated time of the state (min)
        last_state: Last valid state, reported on failure
        bound: Magnitude treated as unbounded growth

    Raises:
        NumericalDivergence: If any entry is NaN, infinite or beyond bound
    """
    for index, value in enumerate(state):
        if not math.isfinite(value) or abs(value) > bound:
            name = STATE_NAMES[index] if index < len(STATE_NAMES) else f"x{index}"
            raise NumericalDivergence(
                f"State {name} diverged at t={time:.6g} min: {value}",
                compartment=name,
                time=time,
                last_state=last_state,
            )
