"""
Three-Compartment System with Effect Site
=========================================

Right-hand side of the remimazolam PK/PD ODE system.

State vector (amounts in mg, Ce in µg/mL):
    x = [A1, A2, A3, Ce, eliminated, administered]

    dA1/dt = −(k10+k12+k13)·A1 + k21·A2 + k31·A3 + u(t)
    dA2/dt = k12·A1 − k21·A2
    dA3/dt = k13·A1 − k31·A3
    dCe/dt = ke0·(A1/V1 − Ce)

The last two entries are bookkeeping integrals used to verify mass balance:
    d(eliminated)/dt = k10·A1
    d(administered)/dt = u(t)
so that administered = A1 + A2 + A3 + eliminated at all times.
"""

import numpy as np
from dataclasses import dataclass
from typing import Tuple, Sequence

from .base import PKParameters

STATE_SIZE = 6
IDX_A1, IDX_A2, IDX_A3, IDX_CE, IDX_ELIMINATED, IDX_ADMINISTERED = range(STATE_SIZE)

# Entries clamped to >= 0 when a step is committed
PHYSICAL_SLICE = slice(0, 4)


@dataclass(frozen=True)
class CompartmentState:
    """
    Snapshot of the compartment system.

    Attributes:
        a1: Central compartment amount (mg)
        a2: Shallow peripheral amount (mg)
        a3: Deep peripheral amount (mg)
        ce: Effect-site concentration (µg/mL)
        eliminated: Cumulative amount cleared from the body (mg)
        administered: Cumulative amount dosed (mg)
    """
    a1: float = 0.0
    a2: float = 0.0
    a3: float = 0.0
    ce: float = 0.0
    eliminated: float = 0.0
    administered: float = 0.0

    def to_vector(self) -> np.ndarray:
        return np.array([self.a1, self.a2, self.a3, self.ce,
                         self.eliminated, self.administered], dtype=float)

    @classmethod
    def from_vector(cls, vector: Sequence[float]) -> 'CompartmentState':
        return cls(*(float(v) for v in vector[:STATE_SIZE]))

    @property
    def body_amount(self) -> float:
        """Drug amount still in the body, A1 + A2 + A3 (mg)."""
        return self.a1 + self.a2 + self.a3

    def with_bolus(self, amount: float) -> 'CompartmentState':
        """Return the state after an instantaneous bolus into A1."""
        return CompartmentState(
            a1=self.a1 + amount, a2=self.a2, a3=self.a3, ce=self.ce,
            eliminated=self.eliminated, administered=self.administered + amount,
        )


class CompartmentSystem:
    """
    ODE right-hand side for one parameter set.

    Stateless apart from the cached rate constants, so one instance can be
    shared by any number of runs and threads.

    Example:
        >>> system = CompartmentSystem(pk)
        >>> dxdt = system.derivative(CompartmentState(a1=10.0).to_vector(), 0.0)
    """

    def __init__(self, params: PKParameters):
        self.params = params
        self.v1 = params.V1
        self.v2 = params.V2
        self.v3 = params.V3
        self.k10 = params.k10
        self.k12 = params.k12
        self.k13 = params.k13
        self.k21 = params.k21
        self.k31 = params.k31
        self.ke0 = params.ke0
        self._k1 = self.k10 + self.k12 + self.k13

    def derivative(self, state: Sequence[float], infusion_rate: float) -> np.ndarray:
        """
        dState/dt for a state vector and an infusion rate (mg/min).

        Negative amounts are floored at zero for the plasma concentration
        that drives the effect site. The derivative itself is not clamped.
        """
        a1, a2, a3, ce = state[0], state[1], state[2], state[3]
        cp = max(a1, 0.0) / self.v1

        return np.array([
            -self._k1 * a1 + self.k21 * a2 + self.k31 * a3 + infusion_rate,
            self.k12 * a1 - self.k21 * a2,
            self.k13 * a1 - self.k31 * a3,
            self.ke0 * (cp - ce),
            self.k10 * a1,
            infusion_rate,
        ])

    def plasma_concentration(self, state: Sequence[float]) -> float:
        """Cp = A1/V1 (µg/mL), floored at zero."""
        return max(state[IDX_A1], 0.0) / self.v1

    @staticmethod
    def clamp(state: np.ndarray) -> np.ndarray:
        """Return a copy with A1, A2, A3 and Ce floored at zero."""
        clamped = np.array(state, dtype=float)
        clamped[PHYSICAL_SLICE] = np.maximum(clamped[PHYSICAL_SLICE], 0.0)
        return clamped

    def error_scale(self) -> np.ndarray:
        """
        Divisors mapping each state entry to a concentration.

        Amounts are divided by their compartment volume so that the absolute
        tolerance applies to concentrations. Bookkeeping entries use V1.
        """
        return np.array([self.v1, self.v2, self.v3, 1.0, self.v1, self.v1])

    def state_matrices(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Linear state-space form over x = [A1, A2, A3, Ce].

        Matrix A (4×4):
            A = [-(k10+k12+k13)  k21   k31   0   ]
                [k12             -k21  0     0   ]
                [k13             0     -k31  0   ]
                [ke0/V1          0     0     -ke0]

        Vector B (4×1):
            B = [1, 0, 0, 0]ᵀ  (u in mg/min)

        Returns:
            Tuple of (A, B)
        """
        A = np.array([
            [-self._k1, self.k21, self.k31, 0.0],
            [self.k12, -self.k21, 0.0, 0.0],
            [self.k13, 0.0, -self.k31, 0.0],
            [self.ke0 / self.v1, 0.0, 0.0, -self.ke0],
        ])
        B = np.array([1.0, 0.0, 0.0, 0.0])
        return A, B
