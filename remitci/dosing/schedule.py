"""
Dosing Schedule
===============

Turns a declarative protocol of bolus and constant-rate phases into a
piecewise-constant, right-continuous infusion-rate function of time.

Protocol rules:
    - Constant-rate phases must not overlap; touching end/start is allowed.
    - Gaps between phases have zero rate.
    - Boluses are instantaneous additions to the central compartment, or,
      when ``bolus_duration`` is set, short rapid infusions superimposed on
      the constant-rate phases.

Units: time in min, amounts in mg, rates in mg/min.

Example:
--------
    >>> schedule = DosingSchedule([
    ...     Bolus(time=0.0, amount=6.0),
    ...     ConstantRate.from_mg_kg_h(1.0, start=0.0, end=60.0, weight=70.0),
    ... ])
    >>> schedule.rate(30.0)
    1.1666666666666667
"""

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union, Optional, Dict, Any

from ..utils.exceptions import InvalidProtocol
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _check_number(name: str, value: float, allow_zero: bool = True) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidProtocol(f"{name} must be a finite number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidProtocol(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}")


@dataclass(frozen=True)
class Bolus:
    """
    Instantaneous dose.

    Attributes:
        time: Administration time (min)
        amount: Dose (mg)
    """
    time: float
    amount: float

    def __post_init__(self):
        _check_number('Bolus time', self.time)
        _check_number('Bolus amount', self.amount)

    @classmethod
    def from_mg_kg(cls, time: float, dose_mg_kg: float, weight: float) -> 'Bolus':
        """Bolus from a weight-normalised dose (mg/kg) and body weight (kg)."""
        return cls(time=time, amount=dose_mg_kg * weight)


@dataclass(frozen=True)
class ConstantRate:
    """
    Constant infusion over [start, end).

    Attributes:
        rate: Infusion rate (mg/min)
        start: Phase start (min)
        end: Phase end (min), strictly after start
    """
    rate: float
    start: float
    end: float

    def __post_init__(self):
        _check_number('Infusion rate', self.rate)
        _check_number('Phase start', self.start)
        _check_number('Phase end', self.end)
        if not self.end > self.start:
            raise InvalidProtocol(
                f"Infusion phase must end after it starts: [{self.start}, {self.end})"
            )

    @classmethod
    def from_mg_kg_h(cls, rate_mg_kg_h: float, start: float, end: float,
                     weight: float) -> 'ConstantRate':
        """Phase from a clinical rate in mg/kg/h and body weight (kg)."""
        return cls(rate=rate_mg_kg_h * weight / 60.0, start=start, end=end)

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def amount(self) -> float:
        return self.rate * self.duration

    def overlaps(self, other: 'ConstantRate') -> bool:
        return self.start < other.end and other.start < self.end


Phase = Union[Bolus, ConstantRate]


def taper_phases(rates: Sequence[float], start: float, step_duration: float) -> List[ConstantRate]:
    """
    Consecutive constant-rate phases of equal length.

    Args:
        rates: Rate of each step (mg/min)
        start: Start of the first step (min)
        step_duration: Length of each step (min)

    Returns:
        List of touching ConstantRate phases
    """
    return [
        ConstantRate(rate=r, start=start + i * step_duration, end=start + (i + 1) * step_duration)
        for i, r in enumerate(rates)
    ]


class DosingSchedule:
    """
    Piecewise-constant infusion-rate function built from protocol phases.

    Rate lookup is O(log n) by bisection over the resolved segment starts.

    Args:
        phases: Bolus and ConstantRate phases in any order
        bolus_duration: If set, each bolus is delivered as a rapid infusion
            of this length (min) instead of an instantaneous addition

    Raises:
        InvalidProtocol: For overlapping infusion phases or malformed phases
    """

    def __init__(self, phases: Sequence[Phase] = (), bolus_duration: Optional[float] = None):
        if bolus_duration is not None:
            _check_number('bolus_duration', bolus_duration, allow_zero=False)
        self.bolus_duration = bolus_duration

        infusions: List[ConstantRate] = []
        boluses: List[Bolus] = []
        for phase in phases:
            if isinstance(phase, ConstantRate):
                infusions.append(phase)
            elif isinstance(phase, Bolus):
                boluses.append(phase)
            else:
                raise InvalidProtocol(f"Unknown protocol phase: {phase!r}")

        infusions.sort(key=lambda p: p.start)
        for previous, current in zip(infusions, infusions[1:]):
            if previous.overlaps(current):
                raise InvalidProtocol(
                    f"Overlapping infusion phases: [{previous.start}, {previous.end}) "
                    f"and [{current.start}, {current.end})"
                )

        boluses.sort(key=lambda b: b.time)
        self.infusions: Tuple[ConstantRate, ...] = tuple(infusions)
        self.boluses: Tuple[Bolus, ...] = tuple(boluses)

        if bolus_duration is not None:
            rapid = [ConstantRate(b.amount / bolus_duration, b.time, b.time + bolus_duration)
                     for b in boluses if b.amount > 0]
            self._starts, self._rates = self._resolve(infusions + rapid)
        else:
            self._starts, self._rates = self._resolve(infusions)

        logger.debug(
            "Resolved schedule: %d infusion phases, %d boluses, %d segments",
            len(self.infusions), len(self.boluses), len(self._starts),
        )

    @staticmethod
    def _resolve(phases: Sequence[ConstantRate]) -> Tuple[List[float], List[float]]:
        """Sum superimposed phases into segments [(start, rate)], last rate 0."""
        boundaries = sorted({p.start for p in phases} | {p.end for p in phases})
        starts: List[float] = []
        rates: List[float] = []
        for t in boundaries:
            rate = sum(p.rate for p in phases if p.start <= t < p.end)
            if rates and rate == rates[-1]:
                continue
            starts.append(t)
            rates.append(rate)
        return starts, rates

    @property
    def phases(self) -> Tuple[Phase, ...]:
        return tuple(sorted(
            self.infusions + self.boluses,
            key=lambda p: p.time if isinstance(p, Bolus) else p.start,
        ))

    def rate(self, t: float) -> float:
        """Infusion rate (mg/min) at time t, right-continuous at phase edges."""
        index = bisect_right(self._starts, t) - 1
        if index < 0:
            return 0.0
        return self._rates[index]

    __call__ = rate

    def get_rate(self, t: float) -> float:
        return self.rate(t)

    def bolus_events(self) -> List[Tuple[float, float]]:
        """(time, amount) of boluses to add directly to the central compartment."""
        if self.bolus_duration is not None:
            return []
        return [(b.time, b.amount) for b in self.boluses if b.amount > 0]

    def breakpoints(self) -> Tuple[float, ...]:
        """Times at which the infusion rate changes."""
        return tuple(self._starts)

    @property
    def end_time(self) -> float:
        """Time after which nothing more is given (min)."""
        times = [0.0] + list(self._starts) + [b.time for b in self.boluses]
        return max(times)

    def total_amount(self, t_end: Optional[float] = None) -> float:
        """Total drug given up to t_end (mg); the whole protocol if None."""
        if t_end is None:
            t_end = math.inf
        total = sum(b.amount for b in self.boluses if b.time <= t_end) if self.bolus_duration is None else 0.0
        edges = list(self._starts) + [math.inf]
        for start, end, rate in zip(edges, edges[1:], self._rates):
            if start >= t_end:
                break
            if rate:
                total += rate * (min(end, t_end) - start)
        return total

    def __len__(self) -> int:
        return len(self.infusions) + len(self.boluses)

    def __repr__(self) -> str:
        return f"DosingSchedule(infusions={len(self.infusions)}, boluses={len(self.boluses)})"

    @classmethod
    def from_config(cls, phases: Sequence[Dict[str, Any]], weight: Optional[float] = None,
                    bolus_duration: Optional[float] = None) -> 'DosingSchedule':
        """
        Build a schedule from plain dictionaries (e.g. loaded from YAML).

        Recognised entries:
            {type: bolus, time, amount}            amount in mg
            {type: bolus, time, dose_mg_kg}        needs weight
            {type: infusion, start, end, rate}     rate in mg/min
            {type: infusion, start, end, rate_mg_kg_h}  needs weight

        Raises:
            InvalidProtocol: For unknown phase types or missing fields
        """
        built: List[Phase] = []
        for index, entry in enumerate(phases):
            kind = str(entry.get('type', '')).lower()
            try:
                if kind == 'bolus':
                    if 'dose_mg_kg' in entry:
                        built.append(Bolus.from_mg_kg(entry['time'], entry['dose_mg_kg'],
                                                      cls._require_weight(weight)))
                    else:
                        built.append(Bolus(time=entry['time'], amount=entry['amount']))
                elif kind in ('infusion', 'constant_rate'):
                    if 'rate_mg_kg_h' in entry:
                        built.append(ConstantRate.from_mg_kg_h(
                            entry['rate_mg_kg_h'], entry['start'], entry['end'],
                            cls._require_weight(weight)))
                    else:
                        built.append(ConstantRate(rate=entry['rate'], start=entry['start'],
                                                  end=entry['end']))
                else:
                    raise InvalidProtocol(f"Phase {index}: unknown type {entry.get('type')!r}")
            except KeyError as e:
                raise InvalidProtocol(f"Phase {index}: missing field {e}") from e
        return cls(built, bolus_duration=bolus_duration)

    @staticmethod
    def _require_weight(weight: Optional[float]) -> float:
        if weight is None:
            raise InvalidProtocol("Weight-normalised dose given without a body weight")
        return weight
