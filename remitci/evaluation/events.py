"""
Critical Event Detection
========================

Finds threshold crossings of plasma or effect-site concentration in a
completed trajectory.

Crossing rules (samples i−1 and i, threshold θ):
    rising:   c[i−1] < θ ≤ c[i]
    falling:  c[i−1] > θ ≥ c[i]

The crossing time is linearly interpolated between the two samples. All
crossings of all thresholds are reported, ordered by time.

Default clinical thresholds (effect-site concentration, µg/mL):
    induction              0.500  rising
    loss_of_consciousness  0.654  rising
    awakening              0.368  falling
    extubation_ready       0.345  falling
"""

import math
from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Optional, Sequence, Dict, Any

import numpy as np
import pandas as pd

from ..solvers.trajectory import Trajectory
from ..utils.exceptions import ConfigurationError


class Direction(Enum):
    """Crossing direction."""
    RISING = "rising"
    FALLING = "falling"
    BOTH = "both"

    @classmethod
    def parse(cls, value) -> 'Direction':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unknown crossing direction: {value!r}")


@dataclass(frozen=True)
class ThresholdSpec:
    """
    A concentration threshold to watch.

    Attributes:
        name: Event name, e.g. 'induction'
        threshold: Concentration (µg/mL)
        direction: Which crossings to report
        variable: 'ce' or 'cp'
        start_time: Ignore crossings before this time (min)
    """
    name: str
    threshold: float
    direction: Direction = Direction.BOTH
    variable: str = 'ce'
    start_time: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'direction', Direction.parse(self.direction))
        if self.variable not in ('ce', 'cp'):
            raise ConfigurationError(
                f"Threshold variable must be 'ce' or 'cp', got {self.variable!r}"
            )
        if not (math.isfinite(self.threshold) and self.threshold >= 0):
            raise ConfigurationError(f"Invalid threshold {self.threshold} for {self.name}")


@dataclass(frozen=True)
class CriticalEvent:
    """
    A detected threshold crossing.

    Attributes:
        name: Threshold name
        direction: RISING or FALLING
        time: Interpolated crossing time (min)
        concentration: Threshold value crossed (µg/mL)
        variable: 'ce' or 'cp'
    """
    name: str
    direction: Direction
    time: float
    concentration: float
    variable: str = 'ce'

    @property
    def kind(self) -> str:
        return f"{self.name}:{self.direction.value}"

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        values['direction'] = self.direction.value
        values['kind'] = self.kind
        return values


DEFAULT_THRESHOLDS = (
    ThresholdSpec('induction', 0.5, Direction.RISING),
    ThresholdSpec('loss_of_consciousness', 0.654, Direction.RISING),
    ThresholdSpec('awakening', 0.368, Direction.FALLING),
    ThresholdSpec('extubation_ready', 0.345, Direction.FALLING),
)


def find_crossings(times: np.ndarray, values: np.ndarray, threshold: float,
                   direction: Direction = Direction.BOTH) -> List[tuple]:
    """
    Interpolated crossing times of a sampled signal.

    A sample equal to the threshold is on the upper side, so a signal
    that touches the threshold and turns back gives a rising crossing
    followed by a falling one.

    Returns:
        List of (time, Direction) in time order
    """
    times = np.asarray(times, dtype=float)
    values = np.asarray(values, dtype=float)
    if times.size < 2:
        return []

    # a sample at the threshold counts as above it
    previous, current = values[:-1] >= threshold, values[1:] >= threshold
    rising = ~previous & current
    falling = previous & ~current

    crossings = []
    for index in np.flatnonzero(rising | falling):
        kind = Direction.RISING if rising[index] else Direction.FALLING
        if direction is not Direction.BOTH and kind is not direction:
            continue
        t0, t1 = times[index], times[index + 1]
        c0, c1 = values[index], values[index + 1]
        t_cross = t0 + (threshold - c0) * (t1 - t0) / (c1 - c0)
        crossings.append((float(t_cross), kind))
    return crossings


class EventDetector:
    """
    Scans trajectories for configured threshold crossings.

    Example:
        >>> detector = EventDetector([ThresholdSpec('induction', 0.5, 'rising')])
        >>> events = detector.detect(trajectory)
        >>> [e.kind for e in events]
        ['induction:rising']
    """

    def __init__(self, thresholds: Sequence[ThresholdSpec] = DEFAULT_THRESHOLDS):
        self.thresholds = tuple(thresholds)

    def detect(self, trajectory: Trajectory) -> List[CriticalEvent]:
        """All crossings of all thresholds, ordered by time."""
        if len(trajectory) < 2:
            return []
        times = trajectory.time
        columns = {}
        events: List[CriticalEvent] = []

        for spec in self.thresholds:
            if spec.variable not in columns:
                columns[spec.variable] = trajectory.column(spec.variable)
            for t_cross, kind in find_crossings(times, columns[spec.variable],
                                                spec.threshold, spec.direction):
                if spec.start_time is not None and t_cross < spec.start_time:
                    continue
                events.append(CriticalEvent(
                    name=spec.name,
                    direction=kind,
                    time=t_cross,
                    concentration=spec.threshold,
                    variable=spec.variable,
                ))

        events.sort(key=lambda e: e.time)
        return events

    def first(self, trajectory: Trajectory, name: str) -> Optional[CriticalEvent]:
        """First event with the given name, or None."""
        for event in self.detect(trajectory):
            if event.name == name:
                return event
        return None


def events_to_dataframe(events: Sequence[CriticalEvent]) -> pd.DataFrame:
    return pd.DataFrame([e.to_dict() for e in events],
                        columns=['name', 'direction', 'time', 'concentration', 'variable', 'kind'])
