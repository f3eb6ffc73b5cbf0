"""Fixed-step time integration of a multibody system."""

import logging
from typing import Callable, Optional

import numpy as np

from multibody.config import IntegratorSettings, ProjectionSettings
from multibody.stage import Stage
from multibody.state import State

logger = logging.getLogger(__name__)


class RungeKuttaIntegrator:
    """Classic 4th-order Runge-Kutta on y = [q, u].

    The derivatives are qdot = N(q) u and the constrained udot of the
    acceleration stage. After each step quaternions are normalized and the
    state is projected back onto the constraint manifold.

    Attributes:
        system: System being integrated.
        settings: Step size and projection tolerance.
    """

    def __init__(self, system, settings: Optional[IntegratorSettings] = None,
                 projection_settings: Optional[ProjectionSettings] = None) -> None:
        self.system = system
        self.settings = settings or IntegratorSettings()
        self.projection_settings = projection_settings or ProjectionSettings()
        if self.settings.step_size <= 0:
            raise ValueError(f"Step size must be positive, got {self.settings.step_size}")

    def _derivative(self, template: State) -> Callable[[float, np.ndarray], np.ndarray]:
        scratch = template.copy()
        matter = self.system.matter

        def deriv(t: float, y: np.ndarray) -> np.ndarray:
            scratch.time = t
            scratch.set_y(y)
            self.system.realize(scratch, Stage.ACCELERATION)
            return np.concatenate([matter.get_qdot(scratch), matter.get_udot(scratch)])

        return deriv

    @staticmethod
    def _rk4_step(func, y0: np.ndarray, t0: float, dt: float) -> np.ndarray:
        """Perform a single 4th-order Runge-Kutta step for ODE y' = func(t, y)."""
        k1 = func(t0, y0)
        k2 = func(t0 + dt * 0.5, y0 + dt * k1 * 0.5)
        k3 = func(t0 + dt * 0.5, y0 + dt * k2 * 0.5)
        k4 = func(t0 + dt, y0 + dt * k3)
        return y0 + (dt / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)

    def step(self, state: State, dt: Optional[float] = None) -> None:
        """Advance `state` in place by one step of `dt`, the configured step size by default."""
        if dt is None:
            dt = self.settings.step_size
        if dt <= 0:
            raise ValueError(f"Step size must be positive, got {dt}")
        y = self._rk4_step(self._derivative(state), state.y, state.time, dt)
        state.set_y(y)
        state.time = state.time + dt
        self.system.project(state, self.settings.projection_tolerance,
                            settings=self.projection_settings)

    def integrate(self, state: State, final_time: float) -> None:
        """Step `state` until its time reaches `final_time`.

        The last step is shortened to land on `final_time` exactly.
        """
        dt = self.settings.step_size
        steps = 0
        while state.time < final_time - 1e-12 * max(1.0, abs(final_time)):
            self.step(state, min(dt, final_time - state.time))
            steps += 1
        logger.debug("Integrated to t=%.6f in %d steps", state.time, steps)
