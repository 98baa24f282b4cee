"""
Test Configuration and Fixtures
================================

Provides pytest configuration and shared fixtures for testing.
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from remitci.models.pharmacokinetics import PatientCovariates, MasuiModel
from remitci.solvers.base import IntegratorConfig


@pytest.fixture
def reference_covariates():
    """Reference patient: 55 y, 70 kg, 170 cm, male, ASA I-II."""
    return PatientCovariates(age=55, weight=70, height=170, sex=0, asa_ps=0)


@pytest.fixture
def female_covariates():
    """Older female ASA III patient."""
    return PatientCovariates(age=72, weight=58, height=155, sex=1, asa_ps=1)


@pytest.fixture
def reference_model(reference_covariates):
    """Masui model of the reference patient."""
    return MasuiModel(reference_covariates)


@pytest.fixture
def system(reference_model):
    """Compartment system of the reference patient."""
    return reference_model.system


@pytest.fixture
def rk45_config():
    """Adaptive Dormand-Prince configuration."""
    return IntegratorConfig(method='adaptive_rk45')


@pytest.fixture
def temp_log_dir(tmp_path):
    """Temporary directory for logs."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir
