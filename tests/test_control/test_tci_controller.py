"""
Unit Tests for the TCI Controller
=================================

Tests setpoint profiles, controller configuration and closed-loop tracking
for effect-site and plasma targeting.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.control import (
    TargetSite,
    TCIConfig,
    TargetProfile,
    TCIController,
)
from remitci.models.pharmacokinetics import CompartmentState
from remitci.solvers import IntegratorConfig, integrate
from remitci.utils.exceptions import ConfigurationError, InvalidProtocol


class TestTargetProfile:
    """Test suite for TargetProfile."""

    def test_piecewise_setpoint(self):
        """Test setpoint lookup, zero before the first step."""
        profile = TargetProfile([(1.0, 0.8), (3.0, 0.6), (60.0, 0.5)])
        assert profile.setpoint(0.5) == 0.0
        assert profile.setpoint(1.0) == 0.8
        assert profile(10.0) == 0.6
        assert profile.setpoint(90.0) == 0.5
        assert profile.change_times() == (1.0, 3.0, 60.0)

    def test_invalid_profiles(self):
        """Test rejection of empty, unordered or negative profiles."""
        with pytest.raises(InvalidProtocol):
            TargetProfile([])
        with pytest.raises(InvalidProtocol):
            TargetProfile([(5.0, 1.0), (5.0, 0.5)])
        with pytest.raises(InvalidProtocol):
            TargetProfile([(0.0, -1.0)])


class TestTCIConfig:
    """Test suite for TCIConfig."""

    def test_defaults(self):
        """Test default controller settings."""
        config = TCIConfig()
        assert config.target_site is TargetSite.EFFECT_SITE
        assert abs(config.control_interval - 10.0 / 60.0) < 1e-12

    def test_parse_target_site(self):
        """Test target site parsing from strings."""
        assert TCIConfig(target_site='plasma').target_site is TargetSite.PLASMA
        with pytest.raises(ConfigurationError):
            TCIConfig(target_site='brain')

    def test_invalid(self):
        """Test validation of intervals and limits."""
        with pytest.raises(ConfigurationError):
            TCIConfig(control_interval=0.0)
        with pytest.raises(ConfigurationError):
            TCIConfig(max_rate=-1.0)
        with pytest.raises(ConfigurationError):
            TCIConfig(prediction_horizon=0.01)


class TestPrediction:
    """Test suite for the analytic prediction."""

    def test_prediction_matches_integration(self, system):
        """Test analytic end-of-interval prediction against the integrator."""
        controller = TCIController(system, TCIConfig(correction=False))
        state = CompartmentState(a1=6.0, a2=2.0, a3=1.0, ce=0.5).to_vector()
        rate = 4.0
        predicted = controller.predict(state, rate)[controller._end_index]

        interval = controller.config.control_interval
        trajectory = integrate(system, state, 0.0, interval, lambda t: rate,
                               config=IntegratorConfig(rel_tol=1e-8, abs_tol=1e-10))
        assert abs(trajectory.ce[-1] - predicted) < 1e-6

    def test_feed_forward_zero_when_above_target(self, system):
        """Test that no drug is requested when Ce will exceed the setpoint."""
        controller = TCIController(system)
        state = CompartmentState(a1=20.0, ce=1.5).to_vector()
        assert controller.feed_forward_rate(state, 1.0) < 0.0


class TestClosedLoop:
    """Test suite for closed-loop tracking."""

    def test_effect_site_tracking(self, system):
        """Test Ce within ±10 % of 1.0 µg/mL from 10 min over a 60 min run."""
        controller = TCIController(system, TCIConfig())
        result = controller.run(TargetProfile.constant(1.0), t_end=60.0)
        trajectory = result.trajectory

        assert trajectory.completed
        assert abs(trajectory.end_time - 60.0) < 1e-9

        steady = trajectory.time >= 10.0
        ce = trajectory.ce[steady]
        assert np.all(np.abs(ce - 1.0) <= 0.1)

    def test_rates_within_limits(self, system):
        """Test that applied rates respect [0, max_rate]."""
        config = TCIConfig(max_rate=15.0)
        result = TCIController(system, config).run(1.0, t_end=20.0)
        rates = np.array([record.rate for record in result.control_log])
        assert np.all(rates >= 0.0)
        assert np.all(rates <= 15.0)
        assert result.control_log[0].saturated
        assert np.all(result.trajectory.rate <= 15.0)

    def test_no_effect_site_overshoot(self, system):
        """Test that effect-site targeting does not overshoot noticeably."""
        result = TCIController(system).run(1.0, t_end=30.0)
        assert np.max(result.trajectory.ce) < 1.05

    def test_plasma_tracking(self, system):
        """Test Cp within ±10 % of target after the first seconds."""
        config = TCIConfig(target_site='plasma')
        result = TCIController(system, config).run(1.0, t_end=30.0)
        steady = result.trajectory.time >= 2.0
        assert np.all(np.abs(result.trajectory.cp[steady] - 1.0) <= 0.1)

    def test_setpoint_decrease(self, system):
        """Test that a lower setpoint pauses the infusion and is reached."""
        profile = TargetProfile([(0.0, 1.0), (30.0, 0.5)])
        result = TCIController(system).run(profile, t_end=60.0)
        after = [r for r in result.control_log if 30.0 <= r.time < 31.0]
        assert all(r.rate == 0.0 for r in after)
        assert abs(result.trajectory.ce[-1] - 0.5) <= 0.05

    def test_equivalent_schedule(self, system):
        """Test that replaying the applied rates reproduces the run."""
        result = TCIController(system).run(1.0, t_end=20.0)
        schedule = result.as_schedule()
        replay = integrate(system, CompartmentState(), 0.0, 20.0, schedule)
        assert abs(replay.ce[-1] - result.trajectory.ce[-1]) < 1e-3
        assert abs(replay[-1].administered - result.trajectory[-1].administered) < 1e-6

    def test_pump_limit_not_corrected(self, system):
        """Test that pump-limited ticks apply exactly max_rate."""
        result = TCIController(system, TCIConfig(max_rate=15.0)).run(1.0, t_end=5.0)
        limited = [r for r in result.control_log if r.feed_forward_rate >= 15.0]
        assert limited
        for record in limited:
            assert record.rate == 15.0
            assert record.saturated

    def test_correction_after_bolus(self, system, rk45_config):
        """Test corrected rates from a post-bolus state stay within the pump limit."""
        config = TCIConfig(max_rate=5.0, correction=True)
        bolus = CompartmentState().with_bolus(5.0)
        result = TCIController(system, config, rk45_config).run(
            1.0, t_end=20.0, initial_state=bolus)

        assert result.trajectory.completed
        for record in result.control_log:
            assert 0.0 <= record.rate <= 5.0
            assert record.saturated == (record.rate == 5.0)
            if record.feed_forward_rate >= 5.0:
                assert record.rate == 5.0
            if record.feed_forward_rate <= 0.0:
                assert record.rate == 0.0

        uncorrected = TCIController(system, TCIConfig(max_rate=5.0, correction=False),
                                    rk45_config).run(1.0, t_end=20.0, initial_state=bolus)
        corrected_ce = np.array([r.simulated for r in result.control_log])
        plain_ce = np.array([r.simulated for r in uncorrected.control_log])
        assert corrected_ce.shape == plain_ce.shape
        assert np.max(np.abs(corrected_ce - plain_ce)) < 1e-3

    def test_setpoint_change_between_ticks(self, system):
        """Test that a setpoint change off the tick grid is applied on time."""
        profile = TargetProfile([(0.0, 1.0), (30.05, 0.5)])
        result = TCIController(system).run(profile, t_end=31.0)
        [record] = [r for r in result.control_log if r.time == 30.05]
        assert record.setpoint == 0.5
        assert record.rate == 0.0
        before = [r for r in result.control_log if r.time < 30.05]
        assert all(r.setpoint == 1.0 for r in before)

    def test_tick_times(self, system):
        """Test regular ticks merged with setpoint changes."""
        controller = TCIController(system)
        ticks = controller.tick_times(TargetProfile([(0.0, 1.0), (0.25, 0.5)]), 0.0, 0.5)
        assert np.allclose(ticks, [0.0, 1 / 6, 0.25, 2 / 6, 0.5])

        # a change on a regular tick is not duplicated
        ticks = controller.tick_times(TargetProfile([(0.0, 1.0), (1 / 3, 0.5)]), 0.0, 0.5)
        assert len(ticks) == 4
        assert 1 / 3 in ticks

    def test_reusable(self, system):
        """Test that a controller gives identical results for repeated runs."""
        controller = TCIController(system)
        first = controller.run(1.0, t_end=10.0)
        second = controller.run(1.0, t_end=10.0)
        assert np.array_equal(first.trajectory.ce, second.trajectory.ce)


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
