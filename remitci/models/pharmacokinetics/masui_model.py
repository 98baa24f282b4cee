"""
Masui PK/PD Model for Remimazolam
=================================

Implements the covariate model of the three-compartment pharmacokinetic
model with effect-site compartment for remimazolam (Masui 2022).

Size scaling uses adjusted body weight (ABW) against a 67.3 kg reference,
with exponent 1 for volumes and 0.75 for clearances.

References:
-----------
- Masui K, et al. "Population pharmacokinetics and pharmacodynamics of
  remimazolam in Japanese patients." Br J Anaesth. 2022.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple, Dict, List

from .base import (
    BasePKModel,
    PatientCovariates,
    DerivedWeights,
    PKParameters,
    check_clinical_ranges,
    calculate_ideal_body_weight,
    calculate_adjusted_body_weight,
)
from .compartment_system import CompartmentSystem
from .ke0 import (
    T_PEAK,
    KE0_BAND,
    FALLBACK_COEFFICIENTS,
    ke0_regression,
    ke0_numerical,
    time_to_peak_effect,
    in_sanity_band,
)
from ...utils.exceptions import NonPhysiologicalParameter, Ke0OutOfRange
from ...utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MasuiParameters:
    """
    Masui model population parameters for remimazolam.

    Default values from Masui et al., Br J Anaesth 2022.

    Attributes:
        theta_1 to theta_10: Structural and covariate coefficients
        reference_weight: ABW reference (kg)
        reference_age: Age reference for V3 (years)
        t_peak: Time to peak effect after a bolus (min)
    """

    theta_1: float = 3.57      # V1 (L)
    theta_2: float = 11.3      # V2 (L)
    theta_3: float = 27.2      # V3 (L)
    theta_4: float = 1.03      # CL (L/min)
    theta_5: float = 1.10      # Q2 (L/min)
    theta_6: float = 0.401     # Q3 (L/min)
    theta_8: float = 0.308     # V3 age coefficient
    theta_9: float = 0.146     # CL sex coefficient
    theta_10: float = -0.184   # CL ASA-PS coefficient

    reference_weight: float = 67.3
    reference_age: float = 54.0
    t_peak: float = T_PEAK


@dataclass(frozen=True)
class Ke0Estimate:
    """
    ke0 together with both of its derivation routes.

    Attributes:
        value: ke0 used by the simulation (min^-1)
        numerical: Exact t_peak solution, None if the root finder failed
        regression: Published regression approximation, kept for audit
        method: 'numerical', or 'regression' when the root finder failed
            and value comes from the fallback coefficients
    """
    value: float
    numerical: Optional[float]
    regression: float
    method: str

    @property
    def in_band(self) -> bool:
        return in_sanity_band(self.value)


def derive_weights(covariates: PatientCovariates) -> DerivedWeights:
    """
    Ideal and adjusted body weight from covariates.

    IBW = 45.4 + 0.89·(height − 152.4) + 4.5·(1 − sex)
    ABW = IBW + 0.4·(TBW − IBW)

    Covariates are validated when constructed, so invalid age, weight or
    height never reach this point (InvalidCovariate).
    """
    ibw = calculate_ideal_body_weight(covariates.height, covariates.sex)
    abw = calculate_adjusted_body_weight(covariates.weight, ibw)
    return DerivedWeights(ibw=ibw, abw=abw)


def _structural_parameters(
    covariates: PatientCovariates,
    weights: DerivedWeights,
    params: MasuiParameters
) -> Dict[str, float]:
    """
    Volumes and clearances before ke0 is known.

    V1 = θ1·r,  V2 = θ2·r,  V3 = (θ3 + θ8·(age − 54))·r
    CL = (θ4 + θ9·sex + θ10·ASA)·r^0.75
    Q2 = θ5·r^0.75,  Q3 = θ6·r^0.75
    where r = ABW / 67.3
    """
    p = params
    ratio = weights.abw / p.reference_weight
    allometric = ratio ** 0.75 if ratio > 0 else float('nan')

    values = {
        'V1': p.theta_1 * ratio,
        'V2': p.theta_2 * ratio,
        'V3': (p.theta_3 + p.theta_8 * (covariates.age - p.reference_age)) * ratio,
        'CL': (p.theta_4 + p.theta_9 * covariates.sex + p.theta_10 * covariates.asa_ps) * allometric,
        'Q2': p.theta_5 * allometric,
        'Q3': p.theta_6 * allometric,
    }

    for name, value in values.items():
        if not np.isfinite(value) or value <= 0:
            raise NonPhysiologicalParameter(
                f"Non-physiological {name}: {value} (ABW={weights.abw:.2f} kg, "
                f"age={covariates.age})",
                parameter=name,
                value=value,
            )
    return values


def _rate_constants(values: Dict[str, float]) -> Tuple[float, float, float, float, float]:
    """Return (k10, k12, k13, k21, k31) from volumes and clearances."""
    return (
        values['CL'] / values['V1'],
        values['Q2'] / values['V1'],
        values['Q3'] / values['V1'],
        values['Q2'] / values['V2'],
        values['Q3'] / values['V3'],
    )


def estimate_ke0(
    covariates: PatientCovariates,
    weights: Optional[DerivedWeights] = None,
    params: Optional[MasuiParameters] = None,
    strict: bool = False
) -> Ke0Estimate:
    """
    Derive ke0 by both routes and select the one used for simulation.

    The t_peak solution is preferred. When no root can be bracketed the
    regression is evaluated with FALLBACK_COEFFICIENTS; the published
    regression is kept on the estimate for audit.

    Args:
        covariates: Patient covariates
        weights: Precomputed weights (derived if None)
        params: Model parameters (published values if None)
        strict: Raise Ke0OutOfRange instead of warning

    Returns:
        Ke0Estimate

    Raises:
        Ke0OutOfRange: If strict and the selected value is outside (0, 1)
    """
    params = params or MasuiParameters()
    weights = weights or derive_weights(covariates)
    values = _structural_parameters(covariates, weights, params)

    regression = ke0_regression(covariates)
    try:
        numerical = ke0_numerical(*_rate_constants(values), t_peak=params.t_peak)
    except ValueError as e:
        logger.warning("Numerical ke0 failed, using regression: %s", e)
        numerical = None

    if numerical is not None:
        estimate = Ke0Estimate(value=numerical, numerical=numerical,
                               regression=regression, method='numerical')
    else:
        fallback = ke0_regression(covariates, FALLBACK_COEFFICIENTS)
        estimate = Ke0Estimate(value=fallback, numerical=None,
                               regression=regression, method='regression')

    if not estimate.in_band:
        message = (
            f"ke0 {estimate.value:.4g} min^-1 ({estimate.method}) outside "
            f"sanity band ({KE0_BAND[0]:g}, {KE0_BAND[1]:g})"
        )
        if strict:
            raise Ke0OutOfRange(message, value=estimate.value)
        logger.warning(message)

    return estimate


def derive_ke0(
    covariates: PatientCovariates,
    params: Optional[MasuiParameters] = None,
    strict: bool = False
) -> float:
    """
    Effect-site rate constant (min^-1) for the given covariates.

    Deterministic: identical covariates always give the identical value.

    Example:
        >>> ke0 = derive_ke0(PatientCovariates(age=55, weight=70, height=170))
        >>> 0.21 < ke0 < 0.23
        True
    """
    return estimate_ke0(covariates, params=params, strict=strict).value


def derive_pk_parameters(
    covariates: PatientCovariates,
    weights: Optional[DerivedWeights] = None,
    ke0: Optional[float] = None,
    params: Optional[MasuiParameters] = None,
    strict: bool = False
) -> PKParameters:
    """
    Individualised PK parameter set for a patient.

    Args:
        covariates: Patient covariates
        weights: Precomputed weights (derived if None)
        ke0: Effect-site rate constant; derived from covariates if None
        params: Model parameters (published values if None)
        strict: Promote ke0 plausibility warnings to errors

    Returns:
        PKParameters

    Raises:
        NonPhysiologicalParameter: If any parameter is not strictly positive
    """
    params = params or MasuiParameters()
    weights = weights or derive_weights(covariates)
    values = _structural_parameters(covariates, weights, params)

    if ke0 is None:
        ke0 = estimate_ke0(covariates, weights, params, strict=strict).value

    return PKParameters(ke0=ke0, **values)


class MasuiModel(BasePKModel):
    """
    Masui PK/PD Model for Remimazolam.

    Holds one patient's covariates and the parameters derived from them.
    Everything is computed once in the constructor and never mutated.

    Mathematical Formulation:
        State-Space: ẋ(t) = Ax(t) + Bu(t),  x = [A1, A2, A3, Ce]
        Effect-Site: Ċe(t) = ke0·(A1(t)/V1 − Ce(t))

    Attributes:
        covariates: Patient covariates
        params: Population parameters
        weights: Derived IBW/ABW
        ke0_estimate: ke0 with both derivation routes
        pk: Individualised PK parameters
        system: Compartment system built from pk
        warnings: Plausibility warnings raised during derivation

    Example:
        >>> model = MasuiModel(PatientCovariates(age=55, weight=70, height=170))
        >>> A, B = model.get_state_space_matrices()
        >>> A.shape
        (4, 4)
    """

    def __init__(
        self,
        covariates: PatientCovariates,
        params: Optional[MasuiParameters] = None,
        strict: bool = False
    ):
        self.covariates = covariates
        self.params = params or MasuiParameters()
        self.strict = strict

        self.warnings: List[str] = list(check_clinical_ranges(covariates, strict=strict))
        self.weights = derive_weights(covariates)
        self.ke0_estimate = estimate_ke0(covariates, self.weights, self.params, strict=strict)
        if not self.ke0_estimate.in_band:
            self.warnings.append(
                f"ke0 {self.ke0_estimate.value:.4g} min^-1 outside sanity band"
            )
        self.pk = derive_pk_parameters(
            covariates, self.weights, ke0=self.ke0_estimate.value, params=self.params
        )

        self.system = CompartmentSystem(self.pk)

        logger.debug(
            "Masui parameters: V1=%.3f V2=%.3f V3=%.3f CL=%.4f Q2=%.4f Q3=%.4f ke0=%.4f",
            self.pk.V1, self.pk.V2, self.pk.V3, self.pk.CL, self.pk.Q2, self.pk.Q3, self.pk.ke0,
        )

    def get_pk_parameters(self) -> PKParameters:
        return self.pk

    def get_state_space_matrices(self) -> Tuple[np.ndarray, np.ndarray]:
        """State-space matrices over [A1, A2, A3, Ce] (see CompartmentSystem)."""
        return self.system.state_matrices()

    def time_to_peak_effect(self) -> float:
        """Time (min) to peak Ce after a bolus with this patient's ke0."""
        p = self.pk
        return time_to_peak_effect(p.k10, p.k12, p.k13, p.k21, p.k31, p.ke0)
