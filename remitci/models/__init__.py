"""
Models module for remitci
=========================

Contains:
    - pharmacokinetics: Masui remimazolam PK/PD model and compartment system
"""

from .pharmacokinetics import (
    PatientCovariates,
    PKParameters,
    MasuiModel,
    CompartmentSystem,
    CompartmentState,
    derive_weights,
    derive_pk_parameters,
    derive_ke0,
)

__all__ = [
    'PatientCovariates',
    'PKParameters',
    'MasuiModel',
    'CompartmentSystem',
    'CompartmentState',
    'derive_weights',
    'derive_pk_parameters',
    'derive_ke0',
]
