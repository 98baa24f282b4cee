"""
Utilities module for remitci
============================

Contains:
    - exceptions: Error hierarchy of the simulation core
    - logger: colorlog-based logging setup
    - config: YAML configuration loading
"""

from .exceptions import (
    RemiTCIError,
    ModelError,
    InvalidCovariate,
    NonPhysiologicalParameter,
    Ke0OutOfRange,
    DosingError,
    InvalidProtocol,
    IntegrationError,
    StepRejected,
    NumericalDivergence,
    ConfigurationError,
)
from .logger import setup_logging, configure_logging, get_logger, log_config

__all__ = [
    "RemiTCIError",
    "ModelError",
    "InvalidCovariate",
    "NonPhysiologicalParameter",
    "Ke0OutOfRange",
    "DosingError",
    "InvalidProtocol",
    "IntegrationError",
    "StepRejected",
    "NumericalDivergence",
    "ConfigurationError",
    "setup_logging",
    "configure_logging",
    "get_logger",
    "log_config",
]
