"""
Fixed-Step Integrators
======================

Explicit Euler and classical fourth-order Runge-Kutta. Both consume exactly
the requested step and never reject it.
"""

import numpy as np

from .base import Integrator, IntegrationMethod, StepResult, RateFunction


class FixedEuler(Integrator):
    """
    Explicit Euler: x(t+dt) = x(t) + dt·f(t, x(t)).

    First order; mainly useful as a reference in convergence studies.
    """

    method = IntegrationMethod.FIXED_EULER

    def _advance(self, state: np.ndarray, t: float, dt: float,
                 rate_fn: RateFunction) -> StepResult:
        new_state = state + dt * self.derivative(state, t, rate_fn)
        return StepResult(new_state, t + dt, dt, dt)


class FixedRK4(Integrator):
    """Classical fourth-order Runge-Kutta."""

    method = IntegrationMethod.FIXED_RK4

    def _advance(self, state: np.ndarray, t: float, dt: float,
                 rate_fn: RateFunction) -> StepResult:
        half = 0.5 * dt
        k1 = self.derivative(state, t, rate_fn)
        k2 = self.derivative(state + half * k1, t + half, rate_fn)
        k3 = self.derivative(state + half * k2, t + half, rate_fn)
        k4 = self.derivative(state + dt * k3, t + dt, rate_fn)
        new_state = state + dt / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)
        return StepResult(new_state, t + dt, dt, dt)
