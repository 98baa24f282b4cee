"""
Unit Tests for the Exception Hierarchy
======================================
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.utils.exceptions import (
    RemiTCIError,
    ModelError,
    InvalidCovariate,
    NonPhysiologicalParameter,
    Ke0OutOfRange,
    DosingError,
    InvalidProtocol,
    IntegrationError,
    StepRejected,
    NumericalDivergence,
    ConfigurationError,
    check_finite_state,
)


class TestHierarchy:
    """Test suite for the exception hierarchy."""

    @pytest.mark.parametrize("error, parent", [
        (InvalidCovariate, ModelError),
        (NonPhysiologicalParameter, ModelError),
        (Ke0OutOfRange, ModelError),
        (InvalidProtocol, DosingError),
        (StepRejected, IntegrationError),
        (NumericalDivergence, IntegrationError),
        (ConfigurationError, RemiTCIError),
    ])
    def test_parents(self, error, parent):
        """Test that every error derives from its group and the base class."""
        assert issubclass(error, parent)
        assert issubclass(error, RemiTCIError)

    def test_divergence_attributes(self):
        """Test the context carried by NumericalDivergence."""
        error = NumericalDivergence("diverged", compartment='Ce', time=3.5,
                                    last_state=[1, 2, 3, 0.4, 0, 6])
        assert error.compartment == 'Ce'
        assert error.time == 3.5
        assert error.last_state == (1.0, 2.0, 3.0, 0.4, 0.0, 6.0)


class TestCheckFiniteState:
    """Test suite for check_finite_state."""

    def test_finite_state_passes(self):
        """Test that a finite state raises nothing."""
        check_finite_state([1.0, 2.0, 3.0, 0.5, 0.0, 6.5], time=1.0)

    @pytest.mark.parametrize("index, name", [(0, 'A1'), (2, 'A3'), (3, 'Ce')])
    def test_names_first_bad_entry(self, index, name):
        """Test that the offending compartment is named."""
        state = [1.0, 2.0, 3.0, 0.5, 0.0, 6.5]
        state[index] = float('nan')
        with pytest.raises(NumericalDivergence) as excinfo:
            check_finite_state(state, time=2.0, last_state=[0.0] * 6)
        assert excinfo.value.compartment == name
        assert excinfo.value.time == 2.0
        assert excinfo.value.last_state == (0.0,) * 6

    def test_unbounded_growth(self):
        """Test that huge values count as divergence."""
        with pytest.raises(NumericalDivergence):
            check_finite_state([1e13, 0, 0, 0, 0, 0], time=0.0)


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
