"""
Simulation Trajectory
=====================

Append-only record of the compartment state over one simulation run, plus
the failure record of a run that ended early.
"""

from dataclasses import dataclass, asdict
from typing import Optional, List, Dict, Any, Iterator, Tuple

import numpy as np
import pandas as pd

from ..utils.exceptions import NumericalDivergence


COLUMNS = ('time', 'a1', 'a2', 'a3', 'cp', 'ce', 'rate', 'eliminated', 'administered')


@dataclass(frozen=True)
class TrajectorySample:
    """
    One recorded point of a run.

    Attributes:
        time: Simulated time (min)
        a1, a2, a3: Compartment amounts (mg)
        cp: Plasma concentration A1/V1 (µg/mL)
        ce: Effect-site concentration (µg/mL)
        rate: Infusion rate in effect at this time (mg/min)
        eliminated: Cumulative amount cleared (mg)
        administered: Cumulative amount dosed (mg)
    """
    time: float
    a1: float
    a2: float
    a3: float
    cp: float
    ce: float
    rate: float
    eliminated: float = 0.0
    administered: float = 0.0

    @property
    def body_amount(self) -> float:
        return self.a1 + self.a2 + self.a3


@dataclass(frozen=True)
class FailureRecord:
    """
    Why and where a run stopped before its horizon.

    Attributes:
        error_type: Exception class name
        message: Exception message
        compartment: Offending state variable, if known
        time: Simulated time of the failure (min)
        last_state: Last valid state vector
    """
    error_type: str
    message: str
    compartment: Optional[str]
    time: float
    last_state: Optional[Tuple[float, ...]]

    @classmethod
    def from_exception(cls, error: NumericalDivergence) -> 'FailureRecord':
        return cls(
            error_type=type(error).__name__,
            message=str(error),
            compartment=error.compartment,
            time=error.time,
            last_state=error.last_state,
        )

    def to_exception(self) -> NumericalDivergence:
        return NumericalDivergence(
            self.message, compartment=self.compartment,
            time=self.time, last_state=self.last_state,
        )


class Trajectory:
    """
    Ordered, append-only sequence of samples with strictly increasing time.

    Example:
        >>> trajectory = integrate(system, CompartmentState(), 0.0, 60.0, schedule)
        >>> trajectory.completed
        True
        >>> df = trajectory.to_dataframe()
    """

    def __init__(self, metadata: Optional[Dict[str, Any]] = None):
        self._samples: List[TrajectorySample] = []
        self.failure: Optional[FailureRecord] = None
        self.metadata: Dict[str, Any] = dict(metadata or {})

    def append(self, sample: TrajectorySample) -> None:
        """
        Add a sample at the end of the trajectory.

        Raises:
            ValueError: If the sample time does not advance
        """
        if self._samples and not sample.time > self._samples[-1].time:
            raise ValueError(
                f"Trajectory time must increase strictly: "
                f"{sample.time} after {self._samples[-1].time}"
            )
        self._samples.append(sample)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[TrajectorySample]:
        return iter(self._samples)

    def __getitem__(self, index):
        return self._samples[index]

    @property
    def samples(self) -> Tuple[TrajectorySample, ...]:
        return tuple(self._samples)

    @property
    def completed(self) -> bool:
        return self.failure is None

    @property
    def end_time(self) -> Optional[float]:
        return self._samples[-1].time if self._samples else None

    def raise_for_failure(self) -> None:
        """Re-raise the recorded divergence, if any."""
        if self.failure is not None:
            raise self.failure.to_exception()

    def column(self, name: str) -> np.ndarray:
        if name not in COLUMNS:
            raise KeyError(f"Unknown trajectory column: {name}")
        return np.array([getattr(s, name) for s in self._samples], dtype=float)

    @property
    def time(self) -> np.ndarray:
        return self.column('time')

    @property
    def cp(self) -> np.ndarray:
        return self.column('cp')

    @property
    def ce(self) -> np.ndarray:
        return self.column('ce')

    @property
    def rate(self) -> np.ndarray:
        return self.column('rate')

    @property
    def body_amount(self) -> np.ndarray:
        return self.column('a1') + self.column('a2') + self.column('a3')

    def value_at(self, t: float, variable: str = 'ce') -> float:
        """Linearly interpolated value of a column at time t."""
        return float(np.interp(t, self.time, self.column(variable)))

    def mass_balance_error(self) -> float:
        """
        Largest deviation of administered − (A1 + A2 + A3 + eliminated) (mg).

        Zero up to integration error and clamping.
        """
        if not self._samples:
            return 0.0
        residual = (self.column('administered') - self.body_amount
                    - self.column('eliminated'))
        return float(np.max(np.abs(residual)))

    def to_dataframe(self) -> pd.DataFrame:
        """Samples as a DataFrame with one column per field."""
        return pd.DataFrame([asdict(s) for s in self._samples], columns=list(COLUMNS))

    def __repr__(self) -> str:
        status = 'completed' if self.completed else f'failed at t={self.failure.time:.4g}'
        return f"Trajectory(samples={len(self)}, end_time={self.end_time}, {status})"
