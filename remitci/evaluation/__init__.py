"""
Evaluation module for remitci
=============================

Contains:
    - events: threshold-crossing detection on trajectories
    - performance: MDPE, MDAPE, wobble, divergence, time in target
"""

from .events import (
    Direction,
    ThresholdSpec,
    CriticalEvent,
    EventDetector,
    DEFAULT_THRESHOLDS,
    find_crossings,
    events_to_dataframe,
)
from .performance import (
    TrackingMetrics,
    calculate_mdpe,
    calculate_mdape,
    calculate_wobble,
    calculate_divergence,
    calculate_time_in_target,
    time_in_target,
    evaluate_tracking,
)

__all__ = [
    "Direction",
    "ThresholdSpec",
    "CriticalEvent",
    "EventDetector",
    "DEFAULT_THRESHOLDS",
    "find_crossings",
    "events_to_dataframe",
    "TrackingMetrics",
    "calculate_mdpe",
    "calculate_mdape",
    "calculate_wobble",
    "calculate_divergence",
    "calculate_time_in_target",
    "time_in_target",
    "evaluate_tracking",
]
