"""Multibody system: matter and forces plus the realization pipeline."""

import itertools
import logging
from typing import Optional

import numpy as np

from multibody.config import ProjectionSettings
from multibody.errors import StageError
from multibody.forces import ForceSubsystem
from multibody.matter import MatterSubsystem
from multibody.stage import Stage
from multibody.state import State

logger = logging.getLogger(__name__)

_system_ids = itertools.count(1)


class MultibodySystem:
    """Owner of a matter subsystem and a force subsystem.

    Build the model through `matter` and `forces`, call `realize_topology()`
    once, then create states with `get_default_state()`.
    """

    def __init__(self) -> None:
        self._id = next(_system_ids)
        self.matter = MatterSubsystem(self)
        self.forces = ForceSubsystem()
        self._topology_realized = False

    @property
    def topology_realized(self) -> bool:
        return self._topology_realized

    def realize_topology(self) -> None:
        """Finalize the model. Irreversible; further model changes raise TopologyError."""
        if self._topology_realized:
            return
        self.matter.finalize()
        self.forces.finalize(self.matter.tree)
        self._topology_realized = True
        logger.debug("Realized topology: nq=%d, nu=%d", self.matter.nq, self.matter.nu)

    def get_default_state(self) -> State:
        """New state holding the default q, zero u and time 0, realized to Model."""
        if not self._topology_realized:
            raise StageError("Topology has not been realized")
        state = State(self._id, self.matter.default_q(), np.zeros(self.matter.nu),
                      [c.enabled_by_default for c in self.matter.constraints])
        self.realize(state, Stage.MODEL)
        return state

    def _check_state(self, state: State) -> None:
        if not self._topology_realized:
            raise StageError("Topology has not been realized")
        if not isinstance(state, State) or state.owner_id != self._id:
            raise StageError("State does not belong to this system")

    def realize(self, state: State, stage: Stage = Stage.ACCELERATION) -> None:
        """Realize `state` through `stage`, one stage at a time.

        Stages that are already realized are left untouched.
        """
        self._check_state(state)
        stage = Stage(stage)
        while state.stage < stage:
            target = state.stage.next()
            logger.debug("Realizing stage %s", target.name)
            state.advance_to(target, self._realize_stage(state, target))

    def _realize_stage(self, state: State, stage: Stage):
        if stage == Stage.TOPOLOGY:
            return None
        if stage == Stage.MODEL:
            return self.matter.realize_model(state)
        if stage == Stage.INSTANCE:
            return self.matter.realize_instance(state)
        if stage == Stage.TIME:
            return self.matter.realize_time(state)
        if stage == Stage.POSITION:
            return self.matter.realize_position(state)
        if stage == Stage.VELOCITY:
            return self.matter.realize_velocity(state)
        if stage == Stage.DYNAMICS:
            return self.matter.realize_dynamics(state, self.forces)
        return self.matter.realize_acceleration(state)

    def project(self, state: State, tol: float, y_weights=None, constraint_tols=None,
                settings: Optional[ProjectionSettings] = None) -> None:
        """Move the state onto the constraint manifold.

        Normalizes quaternions, projects q with Newton iterations until every
        weighted position error is at most `tol`, then projects u.

        Args:
            state: State to correct in place.
            tol: Tolerance on the largest weighted constraint error.
            y_weights: Positive weights for [q, u] (length ny). Ones if None.
                Only the u part weighs the corrections; position corrections
                are Δq = N(q) Δu, so the q weights have no effect.
            constraint_tols: Positive per-equation tolerance units (length
                mp + mv); errors are divided by them. Ones if None.
            settings: Iteration bound and least-squares cutoff.

        Raises:
            ProjectionError: Iteration bound exceeded.
            SingularConstraintError: Rank-deficient constraints that cannot
                remove the error.
        """
        self._check_state(state)
        settings = settings or ProjectionSettings()
        iterations = self.matter.project_q(state, tol, y_weights, constraint_tols, settings)
        if settings.project_velocities:
            self.matter.project_u(state, tol, y_weights, constraint_tols, settings)
        logger.debug("Projection finished after %d position iterations", iterations)

    # Energies

    def calc_kinetic_energy(self, state: State) -> float:
        return self.matter.calc_kinetic_energy(state)

    def calc_potential_energy(self, state: State) -> float:
        return self.matter.calc_potential_energy(state)

    def calc_energy(self, state: State) -> float:
        return self.calc_kinetic_energy(state) + self.calc_potential_energy(state)
