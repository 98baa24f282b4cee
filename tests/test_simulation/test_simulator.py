"""
Unit Tests for the Simulation Facade and Batch Runs
===================================================

Tests open-loop and TCI runs through the Simulator, the protocol engine
helpers, strict plausibility handling and concurrent batch execution.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.dosing import Bolus, ConstantRate, DosingSchedule
from remitci.dosing.optimizer import ProtocolSettings
from remitci.models.pharmacokinetics import PatientCovariates
from remitci.simulation import (
    Simulator,
    SimulationRequest,
    run_batch,
    create_patient_population,
)
from remitci.utils.config import SimulationConfig
from remitci.utils.exceptions import ConfigurationError, InvalidCovariate


@pytest.fixture
def simulator(reference_covariates):
    return Simulator(reference_covariates)


@pytest.fixture
def induction_schedule():
    """0.12 mg/kg bolus and 1 mg/kg/h for 60 min in a 70 kg patient."""
    return DosingSchedule([
        Bolus.from_mg_kg(0.0, 0.12, 70.0),
        ConstantRate.from_mg_kg_h(1.0, 0.0, 60.0, 70.0),
    ])


class TestSimulator:
    """Test suite for Simulator."""

    def test_parameters_derived_once(self, simulator):
        """Test the reference patient parameters on the simulator."""
        assert abs(simulator.pk_parameters.V1 - 3.57) / 3.57 < 0.01
        assert abs(simulator.system.ke0 - 0.2202) / 0.2202 < 0.01

    def test_run_protocol(self, simulator, induction_schedule):
        """Test an open-loop run with events and parameters attached."""
        result = simulator.run_protocol(induction_schedule, t_end=180.0)

        assert result.completed
        assert result.failure is None
        assert result.pk_parameters is simulator.pk_parameters
        assert result.ke0_estimate.value == simulator.system.ke0
        assert result.warnings == []
        assert result.control_log == []

        kinds = [e.kind for e in result.events]
        assert kinds[0] == 'induction:rising'
        assert 'extubation_ready:falling' in kinds
        assert len(result.events_dataframe()) == len(result.events)

    def test_run_protocol_defaults_to_schedule_end(self, simulator, induction_schedule):
        """Test that t_end defaults to the end of the schedule."""
        result = simulator.run_protocol(induction_schedule)
        assert abs(result.trajectory.end_time - 60.0) < 1e-9

    def test_invalid_window(self, simulator):
        """Test that an empty schedule has nothing to simulate."""
        with pytest.raises(ConfigurationError):
            simulator.run_protocol(DosingSchedule())

    def test_run_tci(self, simulator):
        """Test a TCI run through the facade."""
        result = simulator.run_tci(1.0, t_end=30.0)
        assert result.completed
        assert len(result.control_log) >= 179
        metrics = result.tracking(1.0, start_time=10.0)
        assert metrics.time_in_target == 100.0

    def test_optimize_and_step_down(self, reference_covariates):
        """Test the protocol engine through the facade."""
        config = SimulationConfig(protocol=ProtocolSettings(duration=60.0, maintenance_start=30.0))
        simulator = Simulator(reference_covariates, config)

        protocol = simulator.optimize_protocol(7.0)
        assert abs(protocol.predicted_ce - 1.0) < 0.05

        result = simulator.run_step_down(7.0, 3.0)
        assert result.completed
        assert len(result.adjustments) >= 1
        assert abs(result.trajectory.end_time - 60.0) < 1e-9

    def test_plausibility_warnings(self):
        """Test warnings collected for an adolescent patient."""
        covariates = PatientCovariates(age=15, weight=50, height=160)
        result = Simulator(covariates).run_protocol(
            DosingSchedule([Bolus(0.0, 5.0)]), t_end=10.0)
        assert result.completed
        assert len(result.warnings) >= 1

    def test_strict_plausibility(self):
        """Test that strict configuration turns warnings into errors."""
        covariates = PatientCovariates(age=15, weight=50, height=160)
        with pytest.raises(InvalidCovariate):
            Simulator(covariates, SimulationConfig(strict_plausibility=True))


class TestBatch:
    """Test suite for batch runs."""

    def test_request_validation(self, reference_covariates):
        """Test that exactly one of schedule or profile is required."""
        with pytest.raises(ConfigurationError):
            SimulationRequest(reference_covariates, t_end=10.0)
        with pytest.raises(ConfigurationError):
            SimulationRequest(reference_covariates, t_end=10.0,
                              schedule=DosingSchedule([Bolus(0.0, 5.0)]), profile=1.0)

    def test_results_in_request_order(self, induction_schedule):
        """Test concurrent runs return results in request order."""
        patients = create_patient_population(4, seed=7)
        requests = [SimulationRequest(p, t_end=60.0, schedule=induction_schedule, name=p.patient_id)
                    for p in patients]
        requests.append(SimulationRequest(patients[0], t_end=20.0, profile=1.0))

        results = run_batch(requests, max_workers=3, show_progress=False)

        assert len(results) == 5
        for request, result in zip(requests[:4], results[:4]):
            expected = Simulator(request.covariates).run_protocol(request.schedule, request.t_end)
            assert np.array_equal(result.trajectory.ce, expected.trajectory.ce)
        assert results[4].control_log
        assert run_batch([], show_progress=False) == []


class TestPopulation:
    """Test suite for create_patient_population."""

    def test_deterministic(self):
        """Test that a seed reproduces the population."""
        assert create_patient_population(5, seed=42) == create_patient_population(5, seed=42)

    def test_ranges(self):
        """Test covariates stay inside the requested ranges."""
        patients = create_patient_population(50, age_range=(30, 60), weight_range=(60, 80), seed=1)
        assert len(patients) == 50
        assert patients[0].patient_id == "P001"
        assert all(30 <= p.age <= 60 for p in patients)
        assert all(60 <= p.weight <= 80 for p in patients)
        assert all(p.sex in (0, 1) and p.asa_ps in (0, 1) for p in patients)


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
