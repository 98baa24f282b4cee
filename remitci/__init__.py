"""
Remimazolam Target-Controlled Infusion Simulation
=================================================

This package implements a deterministic PK/PD simulation core for
remimazolam: Masui 2022 covariate model, numerically derived ke0,
three-compartment plus effect-site ODE system, selectable integrators,
dosing schedules, model-based TCI and critical-event detection.

Modules:
    - models: Covariates, Masui parameters, ke0 and the compartment system
    - solvers: Fixed-step, adaptive and stiff integrators, trajectories
    - dosing: Bolus / infusion schedules and protocol optimisation
    - control: Plasma and effect-site TCI controller
    - evaluation: Threshold events and tracking performance metrics
    - simulation: Simulator facade and batch runs
    - visualization: Trajectory plots
    - utils: Errors, logging and configuration
"""

__version__ = "0.1.0"
__author__ = "RemiTCI Team"
