"""
Dosing module for remitci
=========================

Contains:
    - schedule: Bolus, ConstantRate and DosingSchedule
    - optimizer: bolus + continuous-rate optimisation and step-down protocols
      (import from ``remitci.dosing.optimizer``; it depends on the solvers)
"""

from .schedule import Bolus, ConstantRate, DosingSchedule, taper_phases

__all__ = [
    "Bolus",
    "ConstantRate",
    "DosingSchedule",
    "taper_phases",
]
