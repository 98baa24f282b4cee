"""
Effect-Site Rate Constant (ke0) for the Masui Remimazolam Model
================================================================

Two routes to ke0 are provided:

1. ``ke0_regression``: the published multiple-regression approximation
   built from five single-covariate polynomials and their interactions.
   With the published intercept it is kept for audit only; the fallback
   evaluates it with ``FALLBACK_COEFFICIENTS`` (intercept −0.930582).

2. ``ke0_numerical``: the exact route. ke0 is chosen so that the
   effect-site concentration after an instantaneous bolus peaks at the
   model's time to peak effect (t_peak = 2.6 min).

Tri-exponential disposition after a unit bolus into V1:
    Cp(t)·V1 = A·e^(−αt) + B·e^(−βt) + C·e^(−γt)

Effect site:
    Ce(t) ∝ ke0·Σ Cᵢ/(ke0 − λᵢ)·(e^(−λᵢt) − e^(−ke0·t))

dCe/dt = 0 at t_peak gives the scalar equation solved here:
    f(ke0) = Σ Cᵢ/(ke0 − λᵢ)·(ke0·e^(−ke0·t) − λᵢ·e^(−λᵢt)) = 0

References:
-----------
- Masui K, et al. "Population pharmacokinetics and pharmacodynamics of
  remimazolam in Japanese patients." Br J Anaesth. 2022.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Tuple
from scipy.optimize import brentq

from .base import PatientCovariates


# Time to peak effect-site concentration after a bolus (min)
T_PEAK = 2.6

# Sanity band for ke0 (min^-1), open interval
KE0_BAND = (0.0, 1.0)

# Intercept that brings the regression into the sanity band; the
# published −9.06 gives ke0 ≈ −7.9 for a 55 y, 70 kg, 170 cm patient
CORRECTED_INTERCEPT = -0.930582

# Below this distance ke0 == λ is treated as the removable singularity
_SINGULARITY_EPS = 1e-8


@dataclass(frozen=True)
class Ke0RegressionCoefficients:
    """
    Published coefficients of the ke0 regression approximation.

    F_x are single-covariate polynomials; F2_x = F_x − offset_x are the
    centred variants entering the interaction terms.
    """

    intercept: float = -9.06
    sex_weight: float = 0.999

    # Centring offsets
    offset_age: float = 0.227
    offset_tbw: float = 0.227
    offset_height: float = 0.226
    offset_sex: float = 0.226
    offset_asa: float = 0.226

    # Pairwise interactions
    age_tbw: float = -4.50
    age_height: float = -4.51
    age_sex: float = 2.46
    age_asa: float = 3.35
    tbw_height: float = -12.6
    tbw_sex: float = 0.394
    tbw_asa: float = 2.06
    height_sex: float = 0.390
    height_asa: float = 2.07
    sex_asa: float = 5.03

    # Triple interactions
    age_tbw_height: float = 99.8
    tbw_height_sex: float = 5.11
    tbw_height_asa: float = -39.4
    tbw_sex_asa: float = -5.00
    height_sex_asa: float = -5.04


# Coefficients of the fallback route when the t_peak solution fails
FALLBACK_COEFFICIENTS = Ke0RegressionCoefficients(intercept=CORRECTED_INTERCEPT)


def f_age(age: float) -> float:
    d = age - 55.0
    return 0.228 - 2.72e-5 * age + 2.96e-7 * d ** 2 - 4.34e-9 * d ** 3 + 5.05e-11 * d ** 4


def f_tbw(weight: float) -> float:
    return 0.196 + 3.53e-4 * weight - 7.91e-7 * (weight - 90.0) ** 2


def f_height(height: float) -> float:
    return 0.148 + 4.73e-4 * height - 1.43e-6 * (height - 167.5) ** 2


def f_sex(sex: int) -> float:
    return 0.237 - 2.16e-2 * sex


def f_asa(asa_ps: int) -> float:
    return 0.214 + 2.41e-2 * asa_ps


def ke0_regression(
    covariates: PatientCovariates,
    coefficients: Ke0RegressionCoefficients = Ke0RegressionCoefficients()
) -> float:
    """
    ke0 from the covariate regression approximation.

    ke0 = c + F_age + F_TBW + F_height + 0.999·F_sex + F_ASAPS
          + Σ pairwise coefficients·F2_x·F2_y
          + Σ triple coefficients·F2_x·F2_y·F2_z

    Args:
        covariates: Patient covariates
        coefficients: Regression coefficients (published values by default)

    Returns:
        ke0 in min^-1. The value is returned unchecked.
    """
    c = coefficients

    fa = f_age(covariates.age)
    ft = f_tbw(covariates.weight)
    fh = f_height(covariates.height)
    fs = f_sex(covariates.sex)
    fx = f_asa(covariates.asa_ps)

    a = fa - c.offset_age
    t = ft - c.offset_tbw
    h = fh - c.offset_height
    s = fs - c.offset_sex
    x = fx - c.offset_asa

    base = c.intercept + fa + ft + fh + c.sex_weight * fs + fx

    pairwise = (
        c.age_tbw * a * t
        + c.age_height * a * h
        + c.age_sex * a * s
        + c.age_asa * a * x
        + c.tbw_height * t * h
        + c.tbw_sex * t * s
        + c.tbw_asa * t * x
        + c.height_sex * h * s
        + c.height_asa * h * x
        + c.sex_asa * s * x
    )

    triple = (
        c.age_tbw_height * a * t * h
        + c.tbw_height_sex * t * h * s
        + c.tbw_height_asa * t * h * x
        + c.tbw_sex_asa * t * s * x
        + c.height_sex_asa * h * s * x
    )

    return base + pairwise + triple


def disposition_constants(
    k10: float, k12: float, k13: float, k21: float, k31: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Hybrid rate constants and coefficients of the tri-exponential disposition.

    The eigenvalues α > β > γ are the roots of
        x³ − a₂x² + a₁x − a₀ = 0
    with
        a₂ = k10 + k12 + k13 + k21 + k31
        a₁ = (k10 + k13)·k21 + (k10 + k12)·k31 + k21·k31
        a₀ = k10·k21·k31

    Returns:
        Tuple of (lambdas, coefficients), each of length 3, ordered α, β, γ.
        Coefficients are normalised to a unit bolus (they sum to 1).
    """
    a2 = k10 + k12 + k13 + k21 + k31
    a1 = (k10 + k13) * k21 + (k10 + k12) * k31 + k21 * k31
    a0 = k10 * k21 * k31

    roots = np.roots([1.0, -a2, a1, -a0])
    lambdas = np.sort(np.real(roots))[::-1]
    alpha, beta, gamma = lambdas

    coeff_a = (k21 - alpha) * (k31 - alpha) / ((beta - alpha) * (gamma - alpha))
    coeff_b = (k21 - beta) * (k31 - beta) / ((alpha - beta) * (gamma - beta))
    coeff_c = (k21 - gamma) * (k31 - gamma) / ((alpha - gamma) * (beta - gamma))

    return lambdas, np.array([coeff_a, coeff_b, coeff_c])


def _peak_condition(ke0: float, lambdas: np.ndarray, coefficients: np.ndarray,
                    t: float) -> float:
    """Value proportional to dCe/dt at time t after a unit bolus."""
    total = 0.0
    for lam, coeff in zip(lambdas, coefficients):
        if abs(ke0 - lam) < _SINGULARITY_EPS:
            total += coeff * math.exp(-lam * t) * (1.0 - lam * t)
        else:
            total += coeff / (ke0 - lam) * (
                ke0 * math.exp(-ke0 * t) - lam * math.exp(-lam * t)
            )
    return total


def ke0_numerical(
    k10: float, k12: float, k13: float, k21: float, k31: float,
    t_peak: float = T_PEAK,
    bracket: Tuple[float, float] = (1e-3, 10.0)
) -> float:
    """
    ke0 that places the effect-site peak after a bolus at ``t_peak``.

    Args:
        k10, k12, k13, k21, k31: Disposition rate constants (min^-1)
        t_peak: Time to peak effect (min)
        bracket: Search interval for the root finder (min^-1)

    Returns:
        ke0 in min^-1

    Raises:
        ValueError: If the bracket does not contain a sign change
    """
    lambdas, coefficients = disposition_constants(k10, k12, k13, k21, k31)
    low, high = bracket
    f_low = _peak_condition(low, lambdas, coefficients, t_peak)
    f_high = _peak_condition(high, lambdas, coefficients, t_peak)
    if not (f_low > 0.0 > f_high):
        raise ValueError(
            f"No ke0 root in [{low}, {high}] for t_peak={t_peak} "
            f"(f_low={f_low:.3g}, f_high={f_high:.3g})"
        )
    return float(brentq(
        _peak_condition, low, high,
        args=(lambdas, coefficients, t_peak),
        xtol=1e-12, rtol=1e-12, maxiter=200,
    ))


def time_to_peak_effect(
    k10: float, k12: float, k13: float, k21: float, k31: float,
    ke0: float,
    search_window: Tuple[float, float] = (1e-3, 60.0)
) -> float:
    """
    Time (min) at which Ce peaks after a bolus, for a given ke0.

    Inverse of ``ke0_numerical``; used to verify a ke0 value.
    """
    lambdas, coefficients = disposition_constants(k10, k12, k13, k21, k31)
    return float(brentq(
        lambda t: _peak_condition(ke0, lambdas, coefficients, t),
        search_window[0], search_window[1],
        xtol=1e-10, maxiter=200,
    ))


def in_sanity_band(ke0: float) -> bool:
    return math.isfinite(ke0) and KE0_BAND[0] < ke0 < KE0_BAND[1]
