"""
Unit Tests for Dosing Schedules
===============================

Tests phase validation, rate lookup, bolus handling and config loading.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.dosing import Bolus, ConstantRate, DosingSchedule, taper_phases
from remitci.utils.exceptions import InvalidProtocol


class TestPhases:
    """Test suite for Bolus and ConstantRate."""

    def test_clinical_rate_conversion(self):
        """Test mg/kg/h to mg/min conversion."""
        phase = ConstantRate.from_mg_kg_h(12.0, start=0.0, end=2.0, weight=70.0)
        assert abs(phase.rate - 14.0) < 1e-12
        assert abs(phase.amount - 28.0) < 1e-12

    def test_bolus_per_kg(self):
        """Test weight-normalised bolus."""
        assert abs(Bolus.from_mg_kg(0.0, 0.12, 70.0).amount - 8.4) < 1e-12

    @pytest.mark.parametrize("kwargs", [
        dict(rate=-1.0, start=0.0, end=1.0),
        dict(rate=1.0, start=2.0, end=2.0),
        dict(rate=1.0, start=3.0, end=1.0),
        dict(rate=float('nan'), start=0.0, end=1.0),
    ])
    def test_invalid_infusion(self, kwargs):
        """Test rejection of malformed infusion phases."""
        with pytest.raises(InvalidProtocol):
            ConstantRate(**kwargs)

    def test_invalid_bolus(self):
        """Test rejection of negative bolus amounts and times."""
        with pytest.raises(InvalidProtocol):
            Bolus(time=0.0, amount=-1.0)
        with pytest.raises(InvalidProtocol):
            Bolus(time=-1.0, amount=1.0)


class TestDosingSchedule:
    """Test suite for DosingSchedule."""

    def test_rate_lookup(self):
        """Test right-continuous piecewise-constant rates."""
        schedule = DosingSchedule([
            ConstantRate(2.0, 0.0, 10.0),
            ConstantRate(1.0, 10.0, 30.0),
        ])
        assert schedule.rate(-1.0) == 0.0
        assert schedule.rate(0.0) == 2.0
        assert schedule.rate(9.999) == 2.0
        assert schedule.rate(10.0) == 1.0
        assert schedule.rate(30.0) == 0.0
        assert schedule(15.0) == schedule.get_rate(15.0) == 1.0

    def test_overlap_rejected(self):
        """Test that overlapping infusion phases are invalid."""
        with pytest.raises(InvalidProtocol):
            DosingSchedule([ConstantRate(1.0, 0.0, 10.0), ConstantRate(1.0, 5.0, 20.0)])

    def test_gap_is_zero_rate(self):
        """Test that gaps between phases have zero rate."""
        schedule = DosingSchedule([ConstantRate(1.0, 0.0, 1.0), ConstantRate(3.0, 3.0, 4.0)])
        assert schedule.rate(2.0) == 0.0
        assert schedule.rate(3.5) == 3.0
        assert schedule.breakpoints() == (0.0, 1.0, 3.0, 4.0)

    def test_boluses(self):
        """Test instantaneous bolus events and totals."""
        schedule = DosingSchedule([Bolus(5.0, 3.0), Bolus(0.0, 6.0), ConstantRate(1.0, 0.0, 10.0)])
        assert schedule.bolus_events() == [(0.0, 6.0), (5.0, 3.0)]
        assert schedule.total_amount() == 19.0
        assert schedule.total_amount(t_end=4.0) == 10.0
        assert len(schedule) == 3

    def test_rapid_bolus_mode(self):
        """Test boluses delivered as short infusions on top of the base rate."""
        schedule = DosingSchedule([Bolus(0.0, 6.0), ConstantRate(1.0, 0.0, 10.0)],
                                  bolus_duration=0.5)
        assert schedule.bolus_events() == []
        assert schedule.rate(0.25) == 13.0
        assert schedule.rate(0.5) == 1.0
        assert abs(schedule.total_amount() - 16.0) < 1e-12

    def test_end_time(self):
        """Test the time after which nothing more is given."""
        schedule = DosingSchedule([ConstantRate(1.0, 0.0, 45.0), Bolus(50.0, 2.0)])
        assert schedule.end_time == 50.0
        assert DosingSchedule().end_time == 0.0

    def test_taper(self):
        """Test consecutive taper phases form a valid schedule."""
        phases = taper_phases([1.0, 0.6, 0.3], start=60.0, step_duration=10.0)
        schedule = DosingSchedule(phases)
        assert schedule.rate(65.0) == 1.0
        assert schedule.rate(75.0) == 0.6
        assert schedule.rate(89.9) == 0.3
        assert schedule.rate(90.0) == 0.0

    def test_unknown_phase(self):
        """Test that foreign objects are rejected."""
        with pytest.raises(InvalidProtocol):
            DosingSchedule([("bolus", 5.0)])


class TestFromConfig:
    """Test suite for dictionary-based schedules."""

    def test_clinical_units(self):
        """Test weight-normalised entries."""
        schedule = DosingSchedule.from_config([
            {'type': 'bolus', 'time': 0.0, 'dose_mg_kg': 0.1},
            {'type': 'infusion', 'start': 0.0, 'end': 60.0, 'rate_mg_kg_h': 1.0},
        ], weight=60.0)
        [(time, amount)] = schedule.bolus_events()
        assert time == 0.0
        assert abs(amount - 6.0) < 1e-12
        assert abs(schedule.rate(10.0) - 1.0) < 1e-12

    def test_absolute_units(self):
        """Test entries given in mg and mg/min."""
        schedule = DosingSchedule.from_config([
            {'type': 'constant_rate', 'start': 0.0, 'end': 5.0, 'rate': 2.0},
        ])
        assert schedule.rate(1.0) == 2.0

    def test_missing_weight(self):
        """Test that weight-normalised doses need a weight."""
        with pytest.raises(InvalidProtocol):
            DosingSchedule.from_config([{'type': 'bolus', 'time': 0.0, 'dose_mg_kg': 0.1}])

    def test_bad_entries(self):
        """Test unknown types and missing fields."""
        with pytest.raises(InvalidProtocol):
            DosingSchedule.from_config([{'type': 'patch', 'time': 0.0}])
        with pytest.raises(InvalidProtocol):
            DosingSchedule.from_config([{'type': 'infusion', 'start': 0.0, 'rate': 1.0}])


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
