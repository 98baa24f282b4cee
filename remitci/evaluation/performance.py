"""
Concentration Tracking Performance Metrics
==========================================

Varvel performance metrics for how closely a simulated concentration
follows its target.

Performance Error (PE) - Base metric:
    PE_t = (C_t − target_t) / target_t × 100 [%]

MDPE (Median Performance Error): bias
    MDPE = Median(PE)
    - Positive: concentration tends to be above target
    - Negative: concentration tends to be below target

MDAPE (Median Absolute Performance Error): inaccuracy
    MDAPE = Median(|PE|)

Wobble: intra-individual variability
    Wobble = Median(|PE − MDPE|)

Divergence: slope of |PE| against time (%/min)

Time in target: percentage of samples within ±tolerance of target

Samples where the target is zero are excluded from PE-based metrics.

References:
-----------
- Varvel JR, Donoho DL, Shafer SL. "Measuring the predictive performance
  of computer-controlled infusion pumps." J Pharmacokinet Biopharm. 1992.
"""

import numpy as np
from dataclasses import dataclass, asdict
from typing import Optional, Union, Callable, Dict

from ..solvers.trajectory import Trajectory


@dataclass
class TrackingMetrics:
    """
    Container for concentration tracking metrics.

    Attributes:
        mdpe: Median Performance Error (%)
        mdape: Median Absolute Performance Error (%)
        wobble: Intra-individual variability (%)
        divergence: Trend in |PE| (%/min)
        time_in_target: Percentage of samples within tolerance (%)
        max_concentration: Peak concentration in the window (µg/mL)
        final_concentration: Concentration at the end of the window (µg/mL)
        total_dose: Drug given over the whole run (mg)
        n_samples: Samples used
    """
    mdpe: float
    mdape: float
    wobble: float
    divergence: float
    time_in_target: float
    max_concentration: float
    final_concentration: float
    total_dose: float
    n_samples: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def calculate_performance_error(values: np.ndarray, target) -> np.ndarray:
    """PE_t = (C_t − target_t) / target_t × 100 for samples with target > 0."""
    values = np.asarray(values, dtype=float)
    target = np.broadcast_to(np.asarray(target, dtype=float), values.shape)
    mask = target > 0
    return (values[mask] - target[mask]) / target[mask] * 100


def calculate_mdpe(values: np.ndarray, target) -> float:
    """Median Performance Error (%)."""
    pe = calculate_performance_error(values, target)
    if pe.size == 0:
        return float('nan')
    return float(np.median(pe))


def calculate_mdape(values: np.ndarray, target) -> float:
    """Median Absolute Performance Error (%)."""
    pe = calculate_performance_error(values, target)
    if pe.size == 0:
        return float('nan')
    return float(np.median(np.abs(pe)))


def calculate_wobble(values: np.ndarray, target) -> float:
    """Wobble = Median(|PE − MDPE|) (%)."""
    pe = calculate_performance_error(values, target)
    if pe.size == 0:
        return float('nan')
    return float(np.median(np.abs(pe - np.median(pe))))


def calculate_divergence(values: np.ndarray, time_values: np.ndarray, target) -> float:
    """
    Slope of the linear regression of |PE| against time (%/min).

    - Positive: tracking worsening
    - Negative: tracking improving
    """
    values = np.asarray(values, dtype=float)
    time_values = np.asarray(time_values, dtype=float)
    target = np.broadcast_to(np.asarray(target, dtype=float), values.shape)
    mask = target > 0
    if np.count_nonzero(mask) < 2:
        return 0.0

    abs_pe = np.abs((values[mask] - target[mask]) / target[mask] * 100)
    t = time_values[mask]

    mean_t = np.mean(t)
    denominator = np.sum((t - mean_t) ** 2)
    if denominator == 0:
        return 0.0
    return float(np.sum((t - mean_t) * (abs_pe - np.mean(abs_pe))) / denominator)


def calculate_time_in_target(values: np.ndarray, target, tolerance: float = 0.10) -> float:
    """
    Percentage of samples within ±tolerance (fraction) of target.

    Args:
        values: Concentrations
        target: Scalar or per-sample target
        tolerance: Relative half-width of the band (0.10 = ±10 %)
    """
    values = np.asarray(values, dtype=float)
    target = np.broadcast_to(np.asarray(target, dtype=float), values.shape)
    if values.size == 0:
        return 0.0
    within = np.abs(values - target) <= tolerance * target
    return float(np.mean(within) * 100)


time_in_target = calculate_time_in_target


def evaluate_tracking(
    trajectory: Trajectory,
    target: Union[float, Callable[[float], float]],
    variable: str = 'ce',
    start_time: float = 0.0,
    end_time: Optional[float] = None,
    tolerance: float = 0.10
) -> TrackingMetrics:
    """
    Tracking metrics of one trajectory column against a target.

    Args:
        trajectory: Completed or partial trajectory
        target: Constant setpoint, or a function of time (e.g. TargetProfile)
        variable: 'ce' or 'cp'
        start_time: Start of the evaluation window (min)
        end_time: End of the evaluation window (min), run end if None
        tolerance: Relative band for time in target

    Returns:
        TrackingMetrics
    """
    times = trajectory.time
    values = trajectory.column(variable)
    end_time = times[-1] if end_time is None and times.size else end_time

    window = (times >= start_time) & (times <= end_time) if times.size else np.zeros(0, bool)
    t = times[window]
    c = values[window]

    if callable(target):
        setpoints = np.array([target(x) for x in t], dtype=float)
    else:
        setpoints = np.full(t.shape, float(target))

    administered = trajectory.column('administered')

    return TrackingMetrics(
        mdpe=calculate_mdpe(c, setpoints),
        mdape=calculate_mdape(c, setpoints),
        wobble=calculate_wobble(c, setpoints),
        divergence=calculate_divergence(c, t, setpoints),
        time_in_target=calculate_time_in_target(c, setpoints, tolerance),
        max_concentration=float(np.max(c)) if c.size else float('nan'),
        final_concentration=float(c[-1]) if c.size else float('nan'),
        total_dose=float(administered[-1]) if administered.size else 0.0,
        n_samples=int(c.size),
    )
