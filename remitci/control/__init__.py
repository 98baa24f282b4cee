"""
Control module for remitci
==========================

Contains:
    - tci_controller: plasma / effect-site target-controlled infusion
"""

from .tci_controller import (
    TargetSite,
    TCIConfig,
    TargetProfile,
    ControlRecord,
    TCIResult,
    TCIController,
    control_log_to_schedule,
)

__all__ = [
    "TargetSite",
    "TCIConfig",
    "TargetProfile",
    "ControlRecord",
    "TCIResult",
    "TCIController",
    "control_log_to_schedule",
]
