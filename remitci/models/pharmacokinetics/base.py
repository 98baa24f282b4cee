"""
Common Base Classes and Utilities for PK/PD Models
===================================================

This module provides the value types shared by the remimazolam covariate
model and the compartment system: patient covariates, derived body weights
and the individualised PK parameter set.

Units:
------
    amounts in mg, volumes in L, clearances in L/min,
    rate constants in min^-1, concentrations in µg/mL (= mg/L)
"""

import math
import numpy as np
from abc import ABC, abstractmethod
from typing import Tuple, Dict, Optional, List
from dataclasses import dataclass, field, asdict

from ...utils.exceptions import InvalidCovariate, NonPhysiologicalParameter
from ...utils.logger import get_logger

logger = get_logger(__name__)


# Clinical ranges used by the validation layer (age y, weight kg, height cm, BMI)
CLINICAL_RANGES = {
    'age': (18.0, 100.0),
    'weight': (30.0, 200.0),
    'height': (120.0, 220.0),
    'bmi': (12.0, 50.0),
}


@dataclass(frozen=True)
class PatientCovariates:
    """
    Patient covariates for Masui model individualisation.

    Attributes:
        age: Patient age in years (> 0)
        weight: Total body weight (TBW) in kg (> 0)
        height: Height in cm (> 0)
        sex: 0 = male, 1 = female
        asa_ps: ASA physical status, 0 = ASA I-II, 1 = ASA III-IV
        patient_id: Optional identifier carried through to results
    """
    age: float
    weight: float
    height: float
    sex: int = 0
    asa_ps: int = 0
    patient_id: Optional[str] = None

    def __post_init__(self):
        """Reject malformed covariates before any derivation happens."""
        for name in ('age', 'weight', 'height'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise InvalidCovariate(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value) or value <= 0:
                raise InvalidCovariate(f"Invalid {name}: {value}. Must be positive.")
        if self.sex not in (0, 1):
            raise InvalidCovariate(f"Invalid sex: {self.sex}. Must be 0 (male) or 1 (female).")
        if self.asa_ps not in (0, 1):
            raise InvalidCovariate(
                f"Invalid ASA-PS: {self.asa_ps}. Must be 0 (ASA I-II) or 1 (ASA III-IV)."
            )

    @property
    def bmi(self) -> float:
        """Body mass index in kg/m²."""
        height_m = self.height / 100.0
        return self.weight / (height_m ** 2)

    @property
    def is_female(self) -> bool:
        return self.sex == 1


@dataclass(frozen=True)
class DerivedWeights:
    """
    Size descriptors derived from covariates.

    Attributes:
        ibw: Ideal body weight (kg)
        abw: Adjusted body weight (kg)
    """
    ibw: float
    abw: float


@dataclass(frozen=True)
class PKParameters:
    """
    Individualised three-compartment PK parameters with effect site.

    Rate constants are computed once on construction and cached on the
    instance; the parameter set is immutable and safe to share between
    concurrent simulations.

    Attributes:
        V1, V2, V3: Compartment volumes (L)
        CL: Elimination clearance (L/min)
        Q2, Q3: Intercompartmental clearances (L/min)
        ke0: Effect-site equilibration rate constant (min^-1)
    """
    V1: float
    V2: float
    V3: float
    CL: float
    Q2: float
    Q3: float
    ke0: float
    k10: float = field(init=False)
    k12: float = field(init=False)
    k21: float = field(init=False)
    k13: float = field(init=False)
    k31: float = field(init=False)

    def __post_init__(self):
        for name in ('V1', 'V2', 'V3', 'CL', 'Q2', 'Q3', 'ke0'):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise NonPhysiologicalParameter(
                    f"Non-physiological {name}: {value}. Must be positive.",
                    parameter=name,
                    value=value,
                )
        object.__setattr__(self, 'k10', self.CL / self.V1)
        object.__setattr__(self, 'k12', self.Q2 / self.V1)
        object.__setattr__(self, 'k21', self.Q2 / self.V2)
        object.__setattr__(self, 'k13', self.Q3 / self.V1)
        object.__setattr__(self, 'k31', self.Q3 / self.V3)

    def get_rate_constants(self) -> Dict[str, float]:
        """Return k10, k12, k21, k13, k31 and ke0 (min^-1)."""
        return {
            'k10': self.k10,
            'k12': self.k12,
            'k21': self.k21,
            'k13': self.k13,
            'k31': self.k31,
            'ke0': self.ke0,
        }

    def get_volumes(self) -> Dict[str, float]:
        return {'V1': self.V1, 'V2': self.V2, 'V3': self.V3}

    def with_ke0(self, ke0: float) -> 'PKParameters':
        """Return a copy with a different effect-site rate constant."""
        return PKParameters(
            V1=self.V1, V2=self.V2, V3=self.V3,
            CL=self.CL, Q2=self.Q2, Q3=self.Q3, ke0=ke0,
        )

    def to_dict(self) -> Dict[str, float]:
        """Flat dictionary of primary and derived parameters for audit output."""
        return asdict(self)


class BasePKModel(ABC):
    """
    Abstract base class for covariate-driven pharmacokinetic models.

    Implementations expose their individualised parameters and the linear
    state-space form of the compartment system.
    """

    @abstractmethod
    def get_pk_parameters(self) -> PKParameters:
        """Return the individualised PK parameter set."""
        pass

    @abstractmethod
    def get_state_space_matrices(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get state-space matrices including the effect site.

        For the 4-state model: ẋ = Ax + Bu
        where x = [A1, A2, A3, Ce] (amounts in mg, Ce in µg/mL)

        Returns:
            Tuple of (A, B):
                - A: 4x4 state transition matrix
                - B: 4-element input vector (u in mg/min)
        """
        pass

    def get_rate_constants(self) -> Dict[str, float]:
        return self.get_pk_parameters().get_rate_constants()

    def get_volumes(self) -> Dict[str, float]:
        return self.get_pk_parameters().get_volumes()


def check_clinical_ranges(covariates: PatientCovariates, strict: bool = False) -> List[str]:
    """
    Check covariates against the clinical ranges the model was built on.

    Values outside the ranges are still simulated; they are reported as
    warnings, or rejected when ``strict`` is set.

    Args:
        covariates: Patient covariates
        strict: Raise instead of warning

    Returns:
        List of warning messages (empty when all values are in range)

    Raises:
        InvalidCovariate: If strict and any value is out of range
    """
    values = {
        'age': covariates.age,
        'weight': covariates.weight,
        'height': covariates.height,
        'bmi': covariates.bmi,
    }
    messages = []
    for name, value in values.items():
        low, high = CLINICAL_RANGES[name]
        if not (low <= value <= high):
            messages.append(
                f"{name} {value:.4g} outside clinical range [{low:g}, {high:g}]"
            )

    if messages and strict:
        raise InvalidCovariate("; ".join(messages))
    for message in messages:
        logger.warning(message)
    return messages


def calculate_ideal_body_weight(height: float, sex: int) -> float:
    """
    Ideal body weight (kg).

    IBW = 45.4 + 0.89·(height − 152.4) + 4.5·(1 − sex)

    Args:
        height: Height (cm)
        sex: 0 = male, 1 = female
    """
    return 45.4 + 0.89 * (height - 152.4) + 4.5 * (1 - sex)


def calculate_adjusted_body_weight(weight: float, ibw: float) -> float:
    """Adjusted body weight (kg): ABW = IBW + 0.4·(TBW − IBW)."""
    return ibw + 0.4 * (weight - ibw)
