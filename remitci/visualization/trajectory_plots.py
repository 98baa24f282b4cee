"""
Trajectory Visualization
========================

Plots for simulated remimazolam runs.

Functions:
- plot_trajectory: Cp/Ce and infusion rate of one run, with events
- plot_population: Ce curves of several runs with median and spread
"""

import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..evaluation.events import CriticalEvent, Direction
from ..solvers.trajectory import Trajectory


sns.set_style("whitegrid")


def _target_curve(target, times: np.ndarray) -> Optional[np.ndarray]:
    if target is None:
        return None
    if callable(target):
        return np.array([target(t) for t in times], dtype=float)
    return np.full(times.shape, float(target))


def plot_trajectory(
    trajectory: Trajectory,
    events: Optional[Sequence[CriticalEvent]] = None,
    target=None,
    title: str = "Remimazolam Simulation",
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
) -> plt.Figure:
    """
    Plot concentrations and infusion rate of one run.

    Args:
        trajectory: Simulated trajectory
        events: Critical events to mark on the concentration panel
        target: Constant setpoint or TargetProfile drawn as a dashed line
        title: Figure title
        save_path: Path to save figure
        show: Whether to display the figure

    Returns:
        Matplotlib figure
    """
    times = trajectory.time
    fig, axes = plt.subplots(2, 1, figsize=(12, 8), sharex=True,
                             gridspec_kw={'height_ratios': [2, 1]})
    fig.suptitle(title, fontsize=14, fontweight='bold')

    # Concentrations
    ax1 = axes[0]
    ax1.plot(times, trajectory.cp, color='steelblue', linewidth=1.5, label='Cp (plasma)')
    ax1.plot(times, trajectory.ce, color='purple', linewidth=2, label='Ce (effect site)')

    target_values = _target_curve(target, times)
    if target_values is not None:
        ax1.step(times, target_values, where='post', color='green',
                 linestyle='--', linewidth=1.5, label='Target')

    for event in events or ():
        color = 'darkorange' if event.direction is Direction.RISING else 'teal'
        ax1.axvline(x=event.time, color=color, linestyle=':', alpha=0.7)
        ax1.annotate(event.name.replace('_', ' '), xy=(event.time, event.concentration),
                     xytext=(4, 6), textcoords='offset points', fontsize=9, color=color)

    if not trajectory.completed:
        ax1.axvline(x=trajectory.failure.time, color='red', linewidth=2,
                    label=f'Failure ({trajectory.failure.error_type})')

    ax1.set_ylabel('Concentration (µg/mL)', fontsize=12)
    ax1.legend(loc='upper right')
    ax1.set_title('Plasma and Effect-site Concentration')

    # Infusion rate
    ax2 = axes[1]
    rate = trajectory.rate
    ax2.fill_between(times, 0, rate, step='post', alpha=0.3, color='red')
    ax2.step(times, rate, where='post', color='red', linewidth=1.5, label='Infusion rate')
    ax2.set_ylabel('Rate (mg/min)', fontsize=12)
    ax2.set_xlabel('Time (min)', fontsize=12)
    ax2.legend(loc='upper right')
    ax2.set_title('Remimazolam Infusion Rate')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    if show:
        plt.show()

    return fig


def plot_population(
    trajectories: List[Trajectory],
    variable: str = 'ce',
    grid_step: float = 0.5,
    title: str = "Population Effect-site Concentration",
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
) -> plt.Figure:
    """
    Overlay one concentration column of several runs with median and 5-95 % band.

    Runs are resampled onto a common grid up to the shortest end time.
    """
    fig, ax = plt.subplots(figsize=(12, 6))
    populated = [t for t in trajectories if len(t) > 1]
    if not populated:
        ax.set_title(title)
        return fig

    t_end = min(t.end_time for t in populated)
    grid = np.arange(0.0, t_end + 1e-9, grid_step)
    curves = np.array([np.interp(grid, t.time, t.column(variable)) for t in populated])

    for curve in curves:
        ax.plot(grid, curve, color='gray', alpha=0.3, linewidth=0.8)
    ax.fill_between(grid, np.percentile(curves, 5, axis=0), np.percentile(curves, 95, axis=0),
                    alpha=0.2, color='purple', label='5-95 %')
    ax.plot(grid, np.median(curves, axis=0), color='purple', linewidth=2, label='Median')

    ax.set_xlabel('Time (min)', fontsize=12)
    ax.set_ylabel(f'{variable.upper()} (µg/mL)', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(loc='upper right')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    if show:
        plt.show()

    return fig
