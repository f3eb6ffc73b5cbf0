"""Matter subsystem: bodies, mobilizers and constraints of a system.

The matter subsystem owns the body tree and the constraint list, computes
the stage cache entries of a state, and answers kinematic and dynamic
queries. Queries realize the state lazily up to the stage that owns the
requested quantity.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from scipy.linalg import lstsq

from multibody.config import ProjectionSettings
from multibody.constraints import Constraint, ConstraintKinematics
from multibody.errors import ProjectionError, SingularConstraintError, StageError, TopologyError
from multibody.mobilizers import Mobilizer, make_mobilizer
from multibody.newton_euler import (
    PositionKinematics,
    VelocityKinematics,
    articulated_body_accelerations,
    calc_body_accelerations,
    calc_gyroscopic_forces,
    calc_mobilizer_reaction_forces,
    calc_position_kinematics,
    calc_transmitted_forces,
    calc_velocity_kinematics,
    composite_body_mass_matrix,
    inverse_dynamics,
    multiply_by_m_inverse,
)
from multibody.spatial import rotate_spatial, shift_force
from multibody.spatial_inertia import MassProperties
from multibody.stage import Stage
from multibody.state import State
from multibody.tree import GROUND, BodyTree

logger = logging.getLogger(__name__)


@dataclass
class ModelCache:
    nq: int
    nu: int


@dataclass
class InstanceCache:
    """Layout of the enabled constraints' equations.

    Holonomic rows come first, then velocity-only rows.

    Attributes:
        enabled: Indices of enabled constraints.
        rows: Equation rows of each enabled constraint, in the constraint's
            own equation order.
        mp: Number of holonomic equations.
        mv: Number of velocity-only equations.
    """

    enabled: List[int]
    rows: Dict[int, np.ndarray]
    mp: int
    mv: int

    @property
    def m(self) -> int:
        return self.mp + self.mv


@dataclass
class PositionCache:
    kinematics: PositionKinematics
    position_errors: np.ndarray
    G: np.ndarray


@dataclass
class VelocityCache:
    """Velocity-stage results.

    Attributes:
        kinematics: Body and mobilizer velocities.
        velocity_errors: Constraint velocity errors in row layout order.
        acceleration_bias: Constraint acceleration errors at udot = 0.
        bias_accelerations: Body accelerations at udot = 0, in Ground.
    """

    kinematics: VelocityKinematics
    velocity_errors: np.ndarray
    acceleration_bias: np.ndarray
    bias_accelerations: List[np.ndarray]


@dataclass
class DynamicsCache:
    body_forces: np.ndarray
    mobility_forces: np.ndarray
    gyroscopic_forces: List[np.ndarray]
    kinetic_energy: float
    potential_energy: float


@dataclass
class AccelerationCache:
    """Acceleration-stage results.

    Attributes:
        udot_free: Accelerations ignoring constraints.
        multipliers: Lagrange multipliers λ in row layout order.
        udot: Constrained generalized accelerations.
        body_accelerations: Spatial acceleration per body, in Ground.
        constraint_body_forces: Forces the constraints apply to each body
            (-C^T λ), in Ground at the body origin.
        constraint_mobility_forces: Generalized forces the constraints
            apply (-D^T λ).
        qdotdot: Second derivatives of q.
        acceleration_errors: Constraint acceleration errors.
        reaction_forces: Mobilizer reaction forces, filled on first request.
    """

    udot_free: np.ndarray
    multipliers: np.ndarray
    udot: np.ndarray
    body_accelerations: List[np.ndarray]
    constraint_body_forces: np.ndarray
    constraint_mobility_forces: np.ndarray
    qdotdot: np.ndarray
    acceleration_errors: np.ndarray
    reaction_forces: Optional[np.ndarray] = field(default=None)


BodyRef = Union[int, "MobilizedBody"]


def _index(body: BodyRef) -> int:
    return int(getattr(body, 'index', body))


class MobilizedBody:
    """Handle to one body of a matter subsystem and its inboard mobilizer."""

    def __init__(self, matter: "MatterSubsystem", index: int) -> None:
        self.matter = matter
        self.index = index

    def __repr__(self) -> str:
        mobilizer = self.mobilizer
        kind = "Ground" if self.index == GROUND else (mobilizer.kind if mobilizer else "Unattached")
        return f"MobilizedBody({self.index}, {kind})"

    def __eq__(self, other) -> bool:
        return (isinstance(other, MobilizedBody) and other.matter is self.matter
                and other.index == self.index)

    def __hash__(self) -> int:
        return hash((id(self.matter), self.index))

    @property
    def mobilizer(self) -> Optional[Mobilizer]:
        return self.matter.tree.bodies[self.index].mobilizer

    @property
    def mass_properties(self) -> MassProperties:
        return self.matter.tree.bodies[self.index].mass_properties

    @property
    def is_ground(self) -> bool:
        return self.index == GROUND

    def get_parent(self) -> Optional["MobilizedBody"]:
        parent = self.matter.tree.parent(self.index)
        return None if parent is None else self.matter.get_mobilized_body(parent)

    @property
    def X_PF(self) -> np.ndarray:
        return self.matter.tree.bodies[self.index].X_PF

    @property
    def X_BM(self) -> np.ndarray:
        return self.matter.tree.bodies[self.index].X_BM

    # Coordinates and speeds

    def get_q(self, state: State) -> np.ndarray:
        return state.q[self.matter.tree.q_slice(self.index)].copy()

    def set_q(self, state: State, q) -> None:
        q_slice = self.matter.tree.q_slice(self.index)
        q = np.asarray(q, dtype=np.float64).flatten()
        n = q_slice.stop - q_slice.start
        if q.size != n:
            raise ValueError(f"Expected arrays of length {n}, got {q.size}")
        state.upd_q()[q_slice] = q

    def get_u(self, state: State) -> np.ndarray:
        return state.u[self.matter.tree.u_slice(self.index)].copy()

    def set_u(self, state: State, u) -> None:
        u_slice = self.matter.tree.u_slice(self.index)
        u = np.asarray(u, dtype=np.float64).flatten()
        n = u_slice.stop - u_slice.start
        if u.size != n:
            raise ValueError(f"Expected arrays of length {n}, got {u.size}")
        state.upd_u()[u_slice] = u

    def get_udot(self, state: State) -> np.ndarray:
        return self.matter.get_udot(state)[self.matter.tree.u_slice(self.index)].copy()

    # Body kinematics

    def get_body_transform(self, state: State) -> np.ndarray:
        return self.matter.get_body_transform(state, self.index)

    def get_body_rotation(self, state: State) -> np.ndarray:
        return self.matter.get_body_rotation(state, self.index)

    def get_body_origin_location(self, state: State) -> np.ndarray:
        return self.matter.get_body_origin_location(state, self.index)

    def get_body_velocity(self, state: State) -> np.ndarray:
        return self.matter.get_body_velocity(state, self.index)

    def get_body_angular_velocity(self, state: State) -> np.ndarray:
        return self.get_body_velocity(state)[:3]

    def get_body_origin_velocity(self, state: State) -> np.ndarray:
        return self.get_body_velocity(state)[3:]

    def get_body_acceleration(self, state: State) -> np.ndarray:
        return self.matter.get_body_acceleration(state, self.index)

    def find_station_location_in_ground(self, state: State, station) -> np.ndarray:
        return self.matter.find_station_location_in_ground(state, self.index, station)

    def find_station_velocity_in_ground(self, state: State, station) -> np.ndarray:
        return self.matter.find_station_velocity_in_ground(state, self.index, station)

    # Mobilizer kinematics

    def get_mobilizer_transform(self, state: State) -> np.ndarray:
        return self.matter.get_mobilizer_transform(state, self.index)

    def get_mobilizer_velocity(self, state: State) -> np.ndarray:
        return self.matter.get_mobilizer_velocity(state, self.index)

    # Fits

    def _fit_q(self, state: State, name: str, value) -> None:
        if self.mobilizer is None:
            return
        fit = getattr(self.mobilizer, name)
        self.set_q(state, fit(self.get_q(state), np.asarray(value, dtype=np.float64)))

    def _fit_u(self, state: State, name: str, value) -> None:
        if self.mobilizer is None:
            return
        fit = getattr(self.mobilizer, name)
        self.set_u(state, fit(self.get_q(state), self.get_u(state), np.asarray(value, dtype=np.float64)))

    def set_q_to_fit_transform(self, state: State, X_FM) -> None:
        self._fit_q(state, "q_to_fit_transform", X_FM)

    def set_q_to_fit_rotation(self, state: State, R_FM) -> None:
        self._fit_q(state, "q_to_fit_rotation", R_FM)

    def set_q_to_fit_translation(self, state: State, p_FM) -> None:
        self._fit_q(state, "q_to_fit_translation", p_FM)

    def set_u_to_fit_velocity(self, state: State, V_FM) -> None:
        self._fit_u(state, "u_to_fit_velocity", V_FM)

    def set_u_to_fit_angular_velocity(self, state: State, w_FM) -> None:
        self._fit_u(state, "u_to_fit_angular_velocity", w_FM)

    def set_u_to_fit_linear_velocity(self, state: State, v_FM) -> None:
        self._fit_u(state, "u_to_fit_linear_velocity", v_FM)

    # Reactions

    def get_mobilizer_reaction_force(self, state: State) -> np.ndarray:
        """Reaction from the parent, moment about the body origin, in Ground."""
        return self.matter.calc_mobilizer_reaction_forces(state)[self.index].copy()

    def get_mobilizer_reaction_force_in_m(self, state: State) -> np.ndarray:
        """Reaction from the parent, moment about the M origin, expressed in M."""
        if self.index == GROUND:
            return np.zeros(6)
        F_G = self.get_mobilizer_reaction_force(state)
        X_GB = self.get_body_transform(state)
        X_GM = X_GB @ self.X_BM
        F_M_origin = shift_force(F_G, X_GM[:3, 3] - X_GB[:3, 3])
        return rotate_spatial(X_GM[:3, :3].T, F_M_origin)


class MatterSubsystem:
    """Bodies, mobilizers and constraints of a multibody system.

    Attributes:
        tree: Body tree; body 0 is Ground.
        constraints: Constraints in the order they were added.
    """

    def __init__(self, system) -> None:
        self._system = system
        self.tree = BodyTree()
        self.constraints: List[Constraint] = []
        self._handles: List[MobilizedBody] = [MobilizedBody(self, GROUND)]

    # Model construction

    @property
    def ground(self) -> MobilizedBody:
        return self._handles[GROUND]

    @property
    def num_bodies(self) -> int:
        return self.tree.num_bodies

    @property
    def num_constraints(self) -> int:
        return len(self.constraints)

    @property
    def nq(self) -> int:
        self.require_topology()
        return self.tree.nq

    @property
    def nu(self) -> int:
        self.require_topology()
        return self.tree.nu

    def add_body(self, mass_properties: MassProperties) -> MobilizedBody:
        """Add an unattached body; attach it with `attach()` before realizing topology."""
        index = self.tree.add_body(mass_properties)
        self._handles.append(MobilizedBody(self, index))
        return self._handles[index]

    def attach(self, child: BodyRef, parent: BodyRef, mobilizer: Union[Mobilizer, str],
               X_PF=None, X_BM=None) -> MobilizedBody:
        """Connect `child` to `parent` through a mobilizer.

        Args:
            child: Body being mobilized.
            parent: Its parent body.
            mobilizer: Mobilizer instance or kind name (e.g. "Ball").
            X_PF: Inboard frame F on the parent, identity if None.
            X_BM: Outboard frame M on the child, identity if None.

        Returns:
            Handle of the child body.
        """
        if isinstance(mobilizer, str):
            mobilizer = make_mobilizer(mobilizer)
        self.tree.attach(_index(child), _index(parent), mobilizer, X_PF, X_BM)
        return self._handles[_index(child)]

    def add_mobilized_body(self, parent: BodyRef, mobilizer: Union[Mobilizer, str],
                           mass_properties: MassProperties, X_PF=None, X_BM=None) -> MobilizedBody:
        """Add a body and attach it to `parent` in one step."""
        body = self.add_body(mass_properties)
        return self.attach(body, parent, mobilizer, X_PF, X_BM)

    def add_constraint(self, constraint: Constraint) -> Constraint:
        if self.tree.finalized:
            raise TopologyError("Constraints cannot be added after topology has been realized")
        constraint.bind(self, len(self.constraints))
        self.constraints.append(constraint)
        return constraint

    def get_mobilized_body(self, index: int) -> MobilizedBody:
        if not 0 <= index < len(self._handles):
            raise IndexError(f"No body with index {index}")
        return self._handles[index]

    def finalize(self) -> None:
        self.tree.finalize()
        for constraint in self.constraints:
            constraint.finalize(self.tree)
        logger.debug("Matter topology: %d bodies, %d constraints",
                     self.tree.num_bodies, len(self.constraints))

    def require_topology(self) -> None:
        if not self.tree.finalized:
            raise StageError("Topology has not been realized")

    def default_q(self) -> np.ndarray:
        return self.tree.default_q()

    # Stage computations

    def realize_model(self, state: State) -> ModelCache:
        return ModelCache(self.tree.nq, self.tree.nu)

    def realize_instance(self, state: State) -> InstanceCache:
        enabled = [c.index for c in self.constraints if state.is_constraint_enabled(c.index)]
        mp = sum(self.constraints[i].num_position_equations for i in enabled)
        mv = sum(self.constraints[i].num_velocity_equations for i in enabled)
        rows = {}
        p_row, v_row = 0, mp
        for i in enabled:
            c = self.constraints[i]
            rows[i] = np.concatenate([np.arange(p_row, p_row + c.num_position_equations),
                                      np.arange(v_row, v_row + c.num_velocity_equations)]).astype(int)
            p_row += c.num_position_equations
            v_row += c.num_velocity_equations
        return InstanceCache(enabled, rows, mp, mv)

    def realize_time(self, state: State) -> None:
        return None

    def realize_position(self, state: State) -> PositionCache:
        inst = state.get_cache(Stage.INSTANCE)
        pk = calc_position_kinematics(self.tree, state.q)
        kin = ConstraintKinematics(self.tree, pk.X_GB)
        perr = np.zeros(inst.mp)
        G = np.zeros((inst.m, self.tree.nu))
        for i in inst.enabled:
            c = self.constraints[i]
            rows = inst.rows[i]
            perr[rows[:c.num_position_equations]] = c.calc_position_errors(kin)
            G[rows] = self._constraint_velocity_matrix(c, kin, pk)
        return PositionCache(pk, perr, G)

    def _constraint_velocity_matrix(self, c: Constraint, kin: ConstraintKinematics,
                                    pk: PositionKinematics) -> np.ndarray:
        """Rows of G for one constraint: Σ C_k J_k + D."""
        C, D = c.calc_jacobian(kin)
        G_c = np.zeros((c.num_equations, self.tree.nu))
        for k, b in enumerate(c.bodies):
            G_c += C[k] @ pk.jacobians[b]
        col = 0
        for b in c.mobilizers:
            u_slice = self.tree.u_slice(b)
            width = u_slice.stop - u_slice.start
            G_c[:, u_slice] += D[:, col:col + width]
            col += width
        return G_c

    def realize_velocity(self, state: State) -> VelocityCache:
        inst = state.get_cache(Stage.INSTANCE)
        pc = state.get_cache(Stage.POSITION)
        vk = calc_velocity_kinematics(self.tree, pc.kinematics, state.q, state.u)
        kin = ConstraintKinematics(self.tree, pc.kinematics.X_GB, vk.V_GB, np.array(state.u))
        A0 = calc_body_accelerations(self.tree, pc.kinematics, np.zeros(self.tree.nu), vk.bias)
        verr = pc.G @ state.u
        bias = np.zeros(inst.m)
        for i in inst.enabled:
            c = self.constraints[i]
            rows = inst.rows[i]
            verr[rows] += c.calc_velocity_offset(kin)
            bias[rows] = self._constraint_acceleration_bias(c, kin, A0)
        return VelocityCache(vk, verr, bias, A0)

    @staticmethod
    def _constraint_acceleration_bias(c: Constraint, kin: ConstraintKinematics,
                                      A0: List[np.ndarray]) -> np.ndarray:
        """Acceleration error at udot = 0: Σ C_k A0_k + bias."""
        bias = np.array(c.calc_acceleration_bias(kin), dtype=np.float64)
        if c.bodies:
            C, _ = c.calc_jacobian(kin)
            for k, b in enumerate(c.bodies):
                bias += C[k] @ A0[b]
        return bias

    def realize_dynamics(self, state: State, forces) -> DynamicsCache:
        pc = state.get_cache(Stage.POSITION)
        vc = state.get_cache(Stage.VELOCITY)
        body_forces, mobility_forces = forces.calc_forces(self, state)
        gyroscopic = calc_gyroscopic_forces(self.tree, pc.kinematics, vc.kinematics)
        kinetic = 0.0
        for index in self.tree.order[1:]:
            V = vc.kinematics.V_GB[index]
            kinetic += 0.5 * V @ pc.kinematics.inertias[index] @ V
        potential = forces.calc_potential_energy(self, state)
        return DynamicsCache(body_forces, mobility_forces, gyroscopic, float(kinetic), potential)

    def realize_acceleration(self, state: State) -> AccelerationCache:
        inst = state.get_cache(Stage.INSTANCE)
        pc = state.get_cache(Stage.POSITION)
        vc = state.get_cache(Stage.VELOCITY)
        dc = state.get_cache(Stage.DYNAMICS)
        pk, vk = pc.kinematics, vc.kinematics
        nb = self.tree.num_bodies

        bias_forces = [dc.gyroscopic_forces[i] - dc.body_forces[i] for i in range(nb)]
        udot_free, _ = articulated_body_accelerations(self.tree, pk, dc.mobility_forces,
                                                      bias_forces, vk.bias)

        G = pc.G
        multipliers = np.zeros(inst.m)
        udot = udot_free
        if inst.m > 0:
            MinvGt = np.column_stack([multiply_by_m_inverse(self.tree, pk, row) for row in G])
            rhs = G @ udot_free + vc.acceleration_bias
            multipliers = lstsq(G @ MinvGt, rhs)[0]
            udot = udot_free - MinvGt @ multipliers

        A = calc_body_accelerations(self.tree, pk, udot, vk.bias)

        constraint_body_forces = np.zeros((nb, 6))
        constraint_mobility_forces = np.zeros(self.tree.nu)
        if inst.m > 0:
            kin = ConstraintKinematics(self.tree, pk.X_GB)
            for i in inst.enabled:
                c = self.constraints[i]
                lam = multipliers[inst.rows[i]]
                C, D = c.calc_jacobian(kin)
                for k, b in enumerate(c.bodies):
                    constraint_body_forces[b] -= C[k].T @ lam
                col = 0
                for b in c.mobilizers:
                    u_slice = self.tree.u_slice(b)
                    width = u_slice.stop - u_slice.start
                    constraint_mobility_forces[u_slice] -= D[:, col:col + width].T @ lam
                    col += width

        qdotdot = np.zeros(self.tree.nq)
        q, u = state.q, state.u
        for index in self.tree.order[1:]:
            mobilizer = self.tree.bodies[index].mobilizer
            q_slice, u_slice = self.tree.q_slice(index), self.tree.u_slice(index)
            qdotdot[q_slice] = mobilizer.calc_qdotdot(q[q_slice], u[u_slice], udot[u_slice])

        aerr = G @ udot + vc.acceleration_bias
        return AccelerationCache(udot_free, multipliers, udot, A, constraint_body_forces,
                                 constraint_mobility_forces, qdotdot, aerr)

    # Lazy access to cache entries

    def _realize(self, state: State, stage: Stage):
        self._system.realize(state, stage)
        return state.get_cache(stage)

    def _position(self, state: State) -> PositionCache:
        return self._realize(state, Stage.POSITION)

    def _velocity(self, state: State) -> VelocityCache:
        return self._realize(state, Stage.VELOCITY)

    def _acceleration(self, state: State) -> AccelerationCache:
        return self._realize(state, Stage.ACCELERATION)

    def constraint_kinematics(self, state: State, stage: Stage = Stage.VELOCITY) -> ConstraintKinematics:
        pk = self._position(state).kinematics
        if stage < Stage.VELOCITY:
            return ConstraintKinematics(self.tree, pk.X_GB)
        vk = self._velocity(state).kinematics
        return ConstraintKinematics(self.tree, pk.X_GB, vk.V_GB, np.array(state.u))

    # Body and mobilizer queries

    def get_body_transform(self, state: State, body: BodyRef) -> np.ndarray:
        return self._position(state).kinematics.X_GB[_index(body)].copy()

    def get_body_rotation(self, state: State, body: BodyRef) -> np.ndarray:
        return self._position(state).kinematics.X_GB[_index(body)][:3, :3].copy()

    def get_body_origin_location(self, state: State, body: BodyRef) -> np.ndarray:
        return self._position(state).kinematics.X_GB[_index(body)][:3, 3].copy()

    def find_station_location_in_ground(self, state: State, body: BodyRef, station) -> np.ndarray:
        X = self._position(state).kinematics.X_GB[_index(body)]
        return X[:3, :3] @ np.asarray(station, dtype=np.float64) + X[:3, 3]

    def get_body_velocity(self, state: State, body: BodyRef) -> np.ndarray:
        return self._velocity(state).kinematics.V_GB[_index(body)].copy()

    def find_station_velocity_in_ground(self, state: State, body: BodyRef, station) -> np.ndarray:
        R = self.get_body_rotation(state, body)
        V = self.get_body_velocity(state, body)
        return V[3:] + np.cross(V[:3], R @ np.asarray(station, dtype=np.float64))

    def get_body_acceleration(self, state: State, body: BodyRef) -> np.ndarray:
        return self._acceleration(state).body_accelerations[_index(body)].copy()

    def get_mobilizer_transform(self, state: State, body: BodyRef) -> np.ndarray:
        return self._position(state).kinematics.X_FM[_index(body)].copy()

    def get_mobilizer_velocity(self, state: State, body: BodyRef) -> np.ndarray:
        return self._velocity(state).kinematics.V_FM[_index(body)].copy()

    def get_qdot(self, state: State) -> np.ndarray:
        return self._velocity(state).kinematics.qdot.copy()

    # System-wide dynamics queries

    def calc_mass_matrix(self, state: State) -> np.ndarray:
        """Mass matrix M(q) (nu, nu)."""
        return composite_body_mass_matrix(self.tree, self._position(state).kinematics)

    def multiply_by_m_inverse(self, state: State, f) -> np.ndarray:
        f = np.asarray(f, dtype=np.float64).flatten()
        return multiply_by_m_inverse(self.tree, self._position(state).kinematics, f)

    def calc_residual_force(self, state: State, udot, include_applied_forces: bool = True) -> np.ndarray:
        """Inverse dynamics residual M udot + c - τ_app - J^T F_app.

        Constraint forces are not included.
        """
        pk = self._position(state).kinematics
        vk = self._velocity(state).kinematics
        body_forces = mobility_forces = None
        if include_applied_forces:
            dc = self._realize(state, Stage.DYNAMICS)
            body_forces = list(dc.body_forces)
            mobility_forces = dc.mobility_forces
        residual, _ = inverse_dynamics(self.tree, pk, vk, udot, body_forces, mobility_forces)
        return residual

    def get_udot(self, state: State) -> np.ndarray:
        return self._acceleration(state).udot.copy()

    def get_udot_free(self, state: State) -> np.ndarray:
        return self._acceleration(state).udot_free.copy()

    def get_qdotdot(self, state: State) -> np.ndarray:
        return self._acceleration(state).qdotdot.copy()

    def get_multipliers(self, state: State) -> np.ndarray:
        return self._acceleration(state).multipliers.copy()

    def get_constraint_body_forces(self, state: State) -> np.ndarray:
        """Forces applied by all constraints, per body, in Ground at the body origin."""
        return self._acceleration(state).constraint_body_forces.copy()

    def get_constraint_mobility_forces(self, state: State) -> np.ndarray:
        return self._acceleration(state).constraint_mobility_forces.copy()

    def get_position_errors(self, state: State) -> np.ndarray:
        return self._position(state).position_errors.copy()

    def get_velocity_errors(self, state: State) -> np.ndarray:
        return self._velocity(state).velocity_errors.copy()

    def get_acceleration_errors(self, state: State) -> np.ndarray:
        return self._acceleration(state).acceleration_errors.copy()

    def calc_kinetic_energy(self, state: State) -> float:
        return self._realize(state, Stage.DYNAMICS).kinetic_energy

    def calc_potential_energy(self, state: State) -> float:
        return self._realize(state, Stage.DYNAMICS).potential_energy

    def calc_system_mass(self) -> float:
        return float(sum(node.mass_properties.mass for node in self.tree.bodies[1:]))

    def calc_system_mass_center_location_in_ground(self, state: State) -> np.ndarray:
        total = self.calc_system_mass()
        if total == 0:
            return np.zeros(3)
        moment = np.zeros(3)
        for index in range(1, self.num_bodies):
            props = self.tree.bodies[index].mass_properties
            moment += props.mass * self.find_station_location_in_ground(state, index, props.com)
        return moment / total

    # Constraint queries

    def get_constraint_multipliers(self, state: State, constraint: Constraint) -> np.ndarray:
        ac = self._acceleration(state)
        inst = state.get_cache(Stage.INSTANCE)
        rows = inst.rows.get(constraint.index)
        if rows is None:
            return np.zeros(constraint.num_equations)
        return ac.multipliers[rows].copy()

    def get_constraint_position_errors(self, state: State, constraint: Constraint) -> np.ndarray:
        return constraint.calc_position_errors(self.constraint_kinematics(state, Stage.POSITION))

    def get_constraint_velocity_errors(self, state: State, constraint: Constraint) -> np.ndarray:
        return constraint.calc_velocity_errors(self.constraint_kinematics(state, Stage.VELOCITY))

    def get_constraint_acceleration_errors(self, state: State, constraint: Constraint) -> np.ndarray:
        ac = self._acceleration(state)
        inst = state.get_cache(Stage.INSTANCE)
        rows = inst.rows.get(constraint.index)
        if rows is None:
            kin = self.constraint_kinematics(state)
            G_c = self._constraint_velocity_matrix(constraint, kin, self._position(state).kinematics)
            A0 = self._velocity(state).bias_accelerations
            return G_c @ ac.udot + self._constraint_acceleration_bias(constraint, kin, A0)
        return ac.acceleration_errors[rows].copy()

    # Reaction forces

    def calc_mobilizer_reaction_forces(self, state: State) -> np.ndarray:
        """Reaction force of every mobilizer.

        The spatial force the parent exerts on each body through its
        mobilizer, moment about the body origin, expressed in Ground, less
        the wrench of the applied and constraint mobility forces acting
        along the mobilizer's own mobilities.

        Returns:
            (n_bodies, 6) array; Ground's row is zero.
        """
        ac = self._acceleration(state)
        if ac.reaction_forces is None:
            pk = self._position(state).kinematics
            dc = state.get_cache(Stage.DYNAMICS)
            applied = [dc.body_forces[i] + ac.constraint_body_forces[i] for i in range(self.num_bodies)]
            transmitted = calc_transmitted_forces(self.tree, pk, ac.body_accelerations,
                                                  dc.gyroscopic_forces, applied)
            mobility_forces = dc.mobility_forces + ac.constraint_mobility_forces
            ac.reaction_forces = np.array(calc_mobilizer_reaction_forces(self.tree, pk, transmitted,
                                                                         mobility_forces))
        return ac.reaction_forces.copy()

    # Projection

    def normalize_quaternions(self, state: State) -> None:
        q = state.upd_q()
        for index in self.tree.order[1:]:
            q_slice = self.tree.q_slice(index)
            q[q_slice] = self.tree.bodies[index].mobilizer.normalize_q(q[q_slice])

    def _weights(self, state: State, y_weights, constraint_tols, m: int) -> Tuple[np.ndarray, np.ndarray]:
        if y_weights is None:
            w_u = np.ones(self.tree.nu)
        else:
            y_weights = np.asarray(y_weights, dtype=np.float64).flatten()
            if y_weights.size != state.ny:
                raise ValueError(f"Expected arrays of length {state.ny}, got {y_weights.size}")
            if np.any(y_weights <= 0):
                raise ValueError("State weights must be positive")
            # q moves only through Δq = N(q) Δu, so the speed weights set the metric
            w_u = y_weights[self.tree.nq:]
        if constraint_tols is None:
            tols = np.ones(m)
        else:
            tols = np.asarray(constraint_tols, dtype=np.float64).flatten()
            if tols.size != m:
                raise ValueError(f"Expected arrays of length {m}, got {tols.size}")
        if np.any(tols <= 0):
            raise ValueError("Constraint tolerances must be positive")
        return w_u, tols

    @staticmethod
    def _weighted_correction(A: np.ndarray, err: np.ndarray, tol: float,
                             settings: ProjectionSettings) -> np.ndarray:
        """Minimum-norm x with A x = -err; raises if A cannot absorb err."""
        x, _, rank, _ = lstsq(A, -err, cond=settings.rcond)
        if rank < A.shape[0]:
            residual = float(np.max(np.abs(A @ x + err)))
            if residual > tol:
                raise SingularConstraintError(
                    f"Constraint Jacobian has rank {rank} < {A.shape[0]} and cannot remove "
                    f"the error (linearized residual {residual:.3e})",
                    rank=rank, residual=residual)
        return x

    def project_q(self, state: State, tol: float, y_weights=None, constraint_tols=None,
                  settings: Optional[ProjectionSettings] = None) -> int:
        """Normalize quaternions and move q onto the position constraint manifold.

        Newton iterations Δu = -W⁻¹ (P W⁻¹)⁺ perr_w, Δq = N(q) Δu, where
        perr_w are the position errors divided by their tolerances and W the
        speed weights.
        The q part of `y_weights` is validated but has no effect: corrections
        are taken in u and mapped to q through N(q).

        Returns:
            Number of Newton iterations performed.
        """
        settings = settings or ProjectionSettings()
        self.normalize_quaternions(state)
        inst = self._realize(state, Stage.INSTANCE)
        if inst.mp == 0:
            return 0
        w_u, tols = self._weights(state, y_weights, constraint_tols, inst.m)
        tols_p = tols[:inst.mp]
        w_inv = 1.0 / w_u

        best = np.inf
        for iteration in range(settings.max_iterations + 1):
            pc = self._position(state)
            perr_w = pc.position_errors / tols_p
            err = float(np.max(np.abs(perr_w)))
            best = min(best, err)
            logger.debug("Position projection iteration %d: weighted error %.3e", iteration, err)
            if err <= tol:
                return iteration
            if iteration == settings.max_iterations:
                break
            A = (pc.G[:inst.mp] / tols_p[:, None]) * w_inv[None, :]
            du = w_inv * self._weighted_correction(A, perr_w, tol, settings)
            q = state.upd_q()
            for index in self.tree.order[1:]:
                mobilizer = self.tree.bodies[index].mobilizer
                q_slice, u_slice = self.tree.q_slice(index), self.tree.u_slice(index)
                q_b = q[q_slice] + mobilizer.calc_n_matrix(q[q_slice]) @ du[u_slice]
                q[q_slice] = mobilizer.normalize_q(q_b)

        logger.warning("Position projection did not converge: best weighted error %.3e after %d iterations",
                       best, settings.max_iterations)
        raise ProjectionError(
            f"Position projection did not converge in {settings.max_iterations} iterations "
            f"(best weighted error {best:.3e}, tolerance {tol:.3e})",
            residual=best, iterations=settings.max_iterations)

    def project_u(self, state: State, tol: float, y_weights=None, constraint_tols=None,
                  settings: Optional[ProjectionSettings] = None) -> None:
        """Remove the velocity constraint error with one weighted least-squares correction."""
        settings = settings or ProjectionSettings()
        inst = self._realize(state, Stage.INSTANCE)
        if inst.m == 0:
            return
        w_u, tols = self._weights(state, y_weights, constraint_tols, inst.m)
        w_inv = 1.0 / w_u
        vc = self._velocity(state)
        verr_w = vc.velocity_errors / tols
        if float(np.max(np.abs(verr_w))) <= tol:
            return
        A = (self._position(state).G / tols[:, None]) * w_inv[None, :]
        du = w_inv * self._weighted_correction(A, verr_w, tol, settings)
        state.upd_u()[:] += du

        err = float(np.max(np.abs(self._velocity(state).velocity_errors / tols)))
        logger.debug("Velocity projection: weighted error %.3e", err)
        if err > tol:
            logger.warning("Velocity projection left weighted error %.3e", err)
            raise ProjectionError(f"Velocity projection left weighted error {err:.3e} above {tol:.3e}",
                                  residual=err, iterations=1)
