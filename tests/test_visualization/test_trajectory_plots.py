"""
Unit Tests for Trajectory Plots
===============================
"""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from remitci.control import TargetProfile
from remitci.dosing import Bolus, ConstantRate, DosingSchedule
from remitci.evaluation import EventDetector
from remitci.models.pharmacokinetics import CompartmentState
from remitci.solvers import integrate
from remitci.solvers.trajectory import Trajectory
from remitci.visualization import plot_trajectory, plot_population


@pytest.fixture
def trajectory(system):
    schedule = DosingSchedule([Bolus(0.0, 8.0), ConstantRate(1.2, 0.0, 30.0)])
    return integrate(system, CompartmentState(), 0.0, 60.0, schedule)


class TestPlotTrajectory:
    """Test suite for plot_trajectory."""

    def test_saves_figure(self, trajectory, tmp_path):
        """Test a two-panel figure with events and a target profile."""
        events = EventDetector().detect(trajectory)
        path = tmp_path / "run.png"
        fig = plot_trajectory(trajectory, events=events,
                              target=TargetProfile([(0.0, 1.0), (30.0, 0.5)]),
                              save_path=path)
        assert len(fig.axes) == 2
        assert path.exists()
        plt.close(fig)


class TestPlotPopulation:
    """Test suite for plot_population."""

    def test_population(self, trajectory, tmp_path):
        """Test the population overlay of several runs."""
        path = tmp_path / "population.png"
        fig = plot_population([trajectory, trajectory], save_path=path)
        assert path.exists()
        plt.close(fig)

    def test_empty(self):
        """Test that runs without samples give an empty axis."""
        fig = plot_population([Trajectory()])
        assert len(fig.axes) == 1
        plt.close(fig)


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
