"""
Pharmacokinetics Module
========================

Masui covariate model, ke0 derivation and the compartment ODE system.
"""

from .base import (
    BasePKModel,
    PatientCovariates,
    DerivedWeights,
    PKParameters,
    CLINICAL_RANGES,
    check_clinical_ranges,
    calculate_ideal_body_weight,
    calculate_adjusted_body_weight,
)
from .ke0 import (
    T_PEAK,
    KE0_BAND,
    Ke0RegressionCoefficients,
    FALLBACK_COEFFICIENTS,
    ke0_regression,
    ke0_numerical,
    disposition_constants,
    time_to_peak_effect,
)
from .masui_model import (
    MasuiModel,
    MasuiParameters,
    Ke0Estimate,
    derive_weights,
    derive_pk_parameters,
    derive_ke0,
    estimate_ke0,
)
from .compartment_system import CompartmentSystem, CompartmentState

__all__ = [
    'BasePKModel',
    'PatientCovariates',
    'DerivedWeights',
    'PKParameters',
    'CLINICAL_RANGES',
    'check_clinical_ranges',
    'calculate_ideal_body_weight',
    'calculate_adjusted_body_weight',
    'T_PEAK',
    'KE0_BAND',
    'Ke0RegressionCoefficients',
    'FALLBACK_COEFFICIENTS',
    'ke0_regression',
    'ke0_numerical',
    'disposition_constants',
    'time_to_peak_effect',
    'MasuiModel',
    'MasuiParameters',
    'Ke0Estimate',
    'derive_weights',
    'derive_pk_parameters',
    'derive_ke0',
    'estimate_ke0',
    'CompartmentSystem',
    'CompartmentState',
]
