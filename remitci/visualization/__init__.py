"""
Visualization module for remitci
================================

Contains:
    - trajectory_plots: single-run and population concentration plots
"""

from .trajectory_plots import plot_trajectory, plot_population

__all__ = ["plot_trajectory", "plot_population"]
