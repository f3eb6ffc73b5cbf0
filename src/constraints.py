"""Kinematic constraints.

Each constraint relates a small set of constrained bodies (and possibly
constrained mobilities) through scalar equations. Holonomic constraints
have position errors perr(q); their velocity errors are the time
derivatives of perr measured in Ground. Vector-valued errors are
re-expressed in the frame of the ancestor body A, the deepest body that is
an ancestor of every constrained body.

All constraints are linear in the speeds at the velocity level:

    verr = Σ_k C_k V_k + D u_c + offset
    aerr = Σ_k C_k A_k + D udot_c + bias(q, u)

where V_k, A_k are the constrained bodies' spatial velocities and
accelerations (Ground frame, at the body origin) and u_c the constrained
mobilities. C_k, D and bias depend on positions and velocities only.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from multibody.errors import TopologyError
from multibody.stage import Stage
from multibody.spatial import rotate_spatial, skew
from multibody.tree import BodyTree


def _body_index(body) -> int:
    index = getattr(body, 'index', body)
    if not isinstance(index, (int, np.integer)):
        raise TypeError(f"Expected a body index or mobilized body, got {type(body).__name__}")
    return int(index)


def _as_vector3(v, name: str) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64).flatten()
    if v.shape != (3,):
        raise ValueError(f"Expected {name} of length 3, got {v.shape}")
    return v


def _as_rotation(R, name: str) -> np.ndarray:
    if R is None:
        return np.eye(3)
    R = np.asarray(R, dtype=np.float64)
    if R.shape == (4, 4):
        R = R[:3, :3]
    if R.shape != (3, 3):
        raise ValueError(f"Expected {name} as a (3, 3) rotation, got shape {R.shape}")
    return R.copy()


@dataclass
class ConstraintKinematics:
    """Kinematic inputs a constraint evaluates against.

    Attributes:
        tree: Finalized body tree.
        X_GB: Body transforms in Ground.
        V_GB: Body velocities in Ground at the body origin; None at the
            position level.
        u: Generalized speeds; None at the position level.
    """

    tree: BodyTree
    X_GB: Sequence[np.ndarray]
    V_GB: Optional[Sequence[np.ndarray]] = None
    u: Optional[np.ndarray] = None


class Constraint:
    """Base class of the constraint kinds.

    Attributes:
        bodies: Constrained body indices, in the order the Jacobian blocks
            and reconstituted forces use.
        mobilizers: Body indices whose mobilities are constrained directly.
        num_position_equations: Number of holonomic equations (mp).
        num_velocity_equations: Number of velocity-only equations (mv).
        ancestor: Ancestor body index, set when topology is realized.
        index: Position of this constraint in its matter subsystem.
    """

    kind = "Constraint"
    num_position_equations = 0
    num_velocity_equations = 0

    def __init__(self, bodies: Sequence[int], mobilizers: Sequence[int] = ()) -> None:
        self.bodies = [_body_index(b) for b in bodies]
        self.mobilizers = [_body_index(b) for b in mobilizers]
        self.ancestor: Optional[int] = None
        self.index: Optional[int] = None
        self.enabled_by_default = True
        self._matter = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(bodies={self.bodies}, mobilizers={self.mobilizers})"

    @property
    def num_equations(self) -> int:
        return self.num_position_equations + self.num_velocity_equations

    def bind(self, matter, index: int) -> None:
        if self._matter is not None:
            raise TopologyError(f"{self!r} already belongs to a matter subsystem")
        self._matter = matter
        self.index = index

    def finalize(self, tree: BodyTree) -> None:
        for b in self.bodies + self.mobilizers:
            if not 0 <= b < tree.num_bodies:
                raise TopologyError(f"{self!r} refers to body {b}, which is not in the tree")
        self.ancestor = tree.common_ancestor(self.bodies + self.mobilizers)

    def num_constrained_mobilities(self, tree: BodyTree) -> int:
        return sum(tree.bodies[b].mobilizer.nu for b in self.mobilizers)

    def _constrained_u(self, kin: ConstraintKinematics) -> np.ndarray:
        if not self.mobilizers:
            return np.zeros(0)
        return np.concatenate([kin.u[kin.tree.u_slice(b)] for b in self.mobilizers])

    def _R_AG(self, kin: ConstraintKinematics) -> np.ndarray:
        return kin.X_GB[self.ancestor][:3, :3].T

    # Equations implemented by each kind

    def calc_position_errors(self, kin: ConstraintKinematics) -> np.ndarray:
        return np.zeros(0)

    def calc_jacobian(self, kin: ConstraintKinematics) -> Tuple[np.ndarray, np.ndarray]:
        """Velocity Jacobian blocks.

        Returns:
            Tuple of:
                - C: (n_bodies, m, 6) block per constrained body.
                - D: (m, n_mobilities) block on the constrained mobilities.
        """
        raise NotImplementedError

    def calc_velocity_offset(self, kin: ConstraintKinematics) -> np.ndarray:
        return np.zeros(self.num_equations)

    def calc_acceleration_bias(self, kin: ConstraintKinematics) -> np.ndarray:
        raise NotImplementedError

    # Derived quantities

    def calc_velocity_errors(self, kin: ConstraintKinematics) -> np.ndarray:
        C, D = self.calc_jacobian(kin)
        verr = self.calc_velocity_offset(kin).copy()
        for k, b in enumerate(self.bodies):
            verr += C[k] @ kin.V_GB[b]
        if D.shape[1] > 0:
            verr += D @ self._constrained_u(kin)
        return verr

    def calc_forces_from_multipliers(self, kin: ConstraintKinematics,
                                     multipliers: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Contract multipliers with this constraint's Jacobian transpose.

        Returns:
            Tuple of:
                - body_forces: (n_bodies, 6) spatial forces at each constrained
                  body origin, expressed in the ancestor frame.
                - mobility_forces: (n_mobilities,) generalized forces.
        """
        multipliers = np.asarray(multipliers, dtype=np.float64).flatten()
        if multipliers.size != self.num_equations:
            raise ValueError(f"Expected arrays of length {self.num_equations}, got {multipliers.size}")
        C, D = self.calc_jacobian(kin)
        R_AG = self._R_AG(kin)
        body_forces = np.array([rotate_spatial(R_AG, C[k].T @ multipliers)
                                for k in range(len(self.bodies))]).reshape(len(self.bodies), 6)
        return body_forces, D.T @ multipliers

    # Queries through the owning matter subsystem

    def _require_matter(self):
        if self._matter is None:
            raise TopologyError(f"{self!r} has not been added to a matter subsystem")
        return self._matter

    def get_ancestor_body(self):
        matter = self._require_matter()
        matter.require_topology()
        return matter.get_mobilized_body(self.ancestor)

    def get_multipliers(self, state) -> np.ndarray:
        return self._require_matter().get_constraint_multipliers(state, self)

    def get_position_errors(self, state) -> np.ndarray:
        return self._require_matter().get_constraint_position_errors(state, self)

    def get_velocity_errors(self, state) -> np.ndarray:
        return self._require_matter().get_constraint_velocity_errors(state, self)

    def get_acceleration_errors(self, state) -> np.ndarray:
        return self._require_matter().get_constraint_acceleration_errors(state, self)

    def calc_constraint_forces_from_multipliers(self, state, multipliers) -> Tuple[np.ndarray, np.ndarray]:
        matter = self._require_matter()
        return self.calc_forces_from_multipliers(matter.constraint_kinematics(state, Stage.POSITION),
                                                 multipliers)

    def is_enabled(self, state) -> bool:
        self._require_matter()
        return state.is_constraint_enabled(self.index)

    def enable(self, state) -> None:
        self._require_matter()
        state.set_constraint_enabled(self.index, True)

    def disable(self, state) -> None:
        self._require_matter()
        state.set_constraint_enabled(self.index, False)


def _station_terms(kin: ConstraintKinematics, body: int, station: np.ndarray):
    """Ground-frame station offset r, its location p, and body angular velocity."""
    X = kin.X_GB[body]
    r = X[:3, :3] @ station
    p = X[:3, 3] + r
    return r, p


class Ball(Constraint):
    """Coincident stations on two bodies (three equations).

    perr = R_AG (p_F - p_B), with p_B a station on the base body and p_F a
    station on the follower.
    """

    kind = "Ball"
    num_position_equations = 3

    def __init__(self, base_body, base_station, follower_body, follower_station) -> None:
        super().__init__([base_body, follower_body])
        self.base_station = _as_vector3(base_station, "base_station")
        self.follower_station = _as_vector3(follower_station, "follower_station")

    def calc_position_errors(self, kin):
        _, p_b = _station_terms(kin, self.bodies[0], self.base_station)
        _, p_f = _station_terms(kin, self.bodies[1], self.follower_station)
        return self._R_AG(kin) @ (p_f - p_b)

    def calc_jacobian(self, kin):
        R_AG = self._R_AG(kin)
        r_b, _ = _station_terms(kin, self.bodies[0], self.base_station)
        r_f, _ = _station_terms(kin, self.bodies[1], self.follower_station)
        C = np.zeros((2, 3, 6))
        C[0] = R_AG @ np.hstack([skew(r_b), -np.eye(3)])
        C[1] = R_AG @ np.hstack([-skew(r_f), np.eye(3)])
        return C, np.zeros((3, 0))

    def calc_acceleration_bias(self, kin):
        r_b, _ = _station_terms(kin, self.bodies[0], self.base_station)
        r_f, _ = _station_terms(kin, self.bodies[1], self.follower_station)
        w_b = kin.V_GB[self.bodies[0]][:3]
        w_f = kin.V_GB[self.bodies[1]][:3]
        centripetal = np.cross(w_f, np.cross(w_f, r_f)) - np.cross(w_b, np.cross(w_b, r_b))
        return self._R_AG(kin) @ centripetal


class ConstantOrientation(Constraint):
    """Frames on two bodies keep the same orientation (three equations).

    Uses the axis pairs (b_y, f_z), (b_z, f_x), (b_x, f_y) of the base frame
    B and follower frame F, with perr_i = -(a_i · c_i). For a small relative
    rotation θ of F with respect to B, perr ≈ θ.
    """

    kind = "ConstantOrientation"
    num_position_equations = 3
    _PAIRS = ((1, 2), (2, 0), (0, 1))

    def __init__(self, base_body, R_BB=None, follower_body=None, R_FF=None) -> None:
        if follower_body is None:
            raise ValueError("ConstantOrientation needs a follower body")
        super().__init__([base_body, follower_body])
        self.R_base_frame = _as_rotation(R_BB, "R_BB")
        self.R_follower_frame = _as_rotation(R_FF, "R_FF")

    def _axes(self, kin):
        R_Gb = kin.X_GB[self.bodies[0]][:3, :3] @ self.R_base_frame
        R_Gf = kin.X_GB[self.bodies[1]][:3, :3] @ self.R_follower_frame
        return [(R_Gb[:, i], R_Gf[:, j]) for i, j in self._PAIRS]

    def calc_position_errors(self, kin):
        return np.array([-np.dot(a, c) for a, c in self._axes(kin)])

    def calc_jacobian(self, kin):
        C = np.zeros((2, 3, 6))
        for row, (a, c) in enumerate(self._axes(kin)):
            n = np.cross(a, c)
            C[0, row, :3] = -n
            C[1, row, :3] = n
        return C, np.zeros((3, 0))

    def calc_acceleration_bias(self, kin):
        w_b = kin.V_GB[self.bodies[0]][:3]
        w_f = kin.V_GB[self.bodies[1]][:3]
        bias = np.zeros(3)
        for row, (a, c) in enumerate(self._axes(kin)):
            n_dot = np.cross(np.cross(w_b, a), c) + np.cross(a, np.cross(w_f, c))
            bias[row] = np.dot(n_dot, w_f - w_b)
        return bias


class Weld(Constraint):
    """Frames on two bodies coincide (six equations).

    Rows 0-2 keep the orientations equal, rows 3-5 keep the frame origins
    together.
    """

    kind = "Weld"
    num_position_equations = 6

    def __init__(self, base_body, X_BB=None, follower_body=None, X_FF=None) -> None:
        if follower_body is None:
            raise ValueError("Weld needs a follower body")
        super().__init__([base_body, follower_body])
        X_BB = np.eye(4) if X_BB is None else np.asarray(X_BB, dtype=np.float64)
        X_FF = np.eye(4) if X_FF is None else np.asarray(X_FF, dtype=np.float64)
        self._orientation = ConstantOrientation(base_body, X_BB[:3, :3], follower_body, X_FF[:3, :3])
        self._ball = Ball(base_body, X_BB[:3, 3], follower_body, X_FF[:3, 3])

    def finalize(self, tree):
        super().finalize(tree)
        self._orientation.ancestor = self.ancestor
        self._ball.ancestor = self.ancestor

    def calc_position_errors(self, kin):
        return np.concatenate([self._orientation.calc_position_errors(kin),
                               self._ball.calc_position_errors(kin)])

    def calc_jacobian(self, kin):
        C_o, _ = self._orientation.calc_jacobian(kin)
        C_b, _ = self._ball.calc_jacobian(kin)
        return np.concatenate([C_o, C_b], axis=1), np.zeros((6, 0))

    def calc_acceleration_bias(self, kin):
        return np.concatenate([self._orientation.calc_acceleration_bias(kin),
                               self._ball.calc_acceleration_bias(kin)])


class Rod(Constraint):
    """Fixed distance between stations on two bodies (one equation).

    perr = (d · d - L²) / 2 with d = p_2 - p_1.
    """

    kind = "Rod"
    num_position_equations = 1

    def __init__(self, body1, station1, body2, station2, length: float) -> None:
        super().__init__([body1, body2])
        self.station1 = _as_vector3(station1, "station1")
        self.station2 = _as_vector3(station2, "station2")
        if length <= 0:
            raise ValueError(f"Rod length must be positive, got {length}")
        self.length = float(length)

    def _terms(self, kin):
        r1, p1 = _station_terms(kin, self.bodies[0], self.station1)
        r2, p2 = _station_terms(kin, self.bodies[1], self.station2)
        return r1, r2, p2 - p1

    def calc_position_errors(self, kin):
        _, _, d = self._terms(kin)
        return np.array([0.5 * (np.dot(d, d) - self.length ** 2)])

    def calc_jacobian(self, kin):
        r1, r2, d = self._terms(kin)
        C = np.zeros((2, 1, 6))
        C[0, 0] = -np.concatenate([np.cross(r1, d), d])
        C[1, 0] = np.concatenate([np.cross(r2, d), d])
        return C, np.zeros((1, 0))

    def calc_acceleration_bias(self, kin):
        r1, r2, d = self._terms(kin)
        V1 = kin.V_GB[self.bodies[0]]
        V2 = kin.V_GB[self.bodies[1]]
        w1, w2 = V1[:3], V2[:3]
        d_dot = (V2[3:] + np.cross(w2, r2)) - (V1[3:] + np.cross(w1, r1))
        centripetal = np.cross(w2, np.cross(w2, r2)) - np.cross(w1, np.cross(w1, r1))
        return np.array([np.dot(d_dot, d_dot) + np.dot(d, centripetal)])


class PointInPlane(Constraint):
    """A follower station stays in a plane fixed on the plane body (one equation).

    The plane is {x : n · x = h} in the plane body's frame; perr = n · r - h
    with r the follower station measured from the plane body origin.
    """

    kind = "PointInPlane"
    num_position_equations = 1

    def __init__(self, plane_body, normal, height: float, follower_body, follower_station) -> None:
        super().__init__([plane_body, follower_body])
        normal = _as_vector3(normal, "normal")
        self.normal = normal / np.linalg.norm(normal)
        self.height = float(height)
        self.follower_station = _as_vector3(follower_station, "follower_station")

    def _terms(self, kin):
        X_b = kin.X_GB[self.bodies[0]]
        n = X_b[:3, :3] @ self.normal
        r_f, p_f = _station_terms(kin, self.bodies[1], self.follower_station)
        return n, r_f, p_f - X_b[:3, 3]

    def calc_position_errors(self, kin):
        n, _, r = self._terms(kin)
        return np.array([np.dot(n, r) - self.height])

    def calc_jacobian(self, kin):
        n, r_f, r = self._terms(kin)
        C = np.zeros((2, 1, 6))
        C[0, 0] = np.concatenate([np.cross(n, r), -n])
        C[1, 0] = np.concatenate([np.cross(r_f, n), n])
        return C, np.zeros((1, 0))

    def calc_acceleration_bias(self, kin):
        n, r_f, r = self._terms(kin)
        V_b = kin.V_GB[self.bodies[0]]
        V_f = kin.V_GB[self.bodies[1]]
        w_b, w_f = V_b[:3], V_f[:3]
        r_dot = V_f[3:] + np.cross(w_f, r_f) - V_b[3:]
        n_dot = np.cross(w_b, n)
        bias = (np.dot(np.cross(w_b, n_dot), r) + 2.0 * np.dot(n_dot, r_dot)
                + np.dot(n, np.cross(w_f, np.cross(w_f, r_f))))
        return np.array([bias])


class ConstantSpeed(Constraint):
    """One generalized speed of a mobilizer is held at a prescribed value."""

    kind = "ConstantSpeed"
    num_velocity_equations = 1

    def __init__(self, mobilized_body, speed: float, which_u: int = 0) -> None:
        super().__init__([], [mobilized_body])
        self.speed = float(speed)
        self.which_u = int(which_u)

    def finalize(self, tree):
        super().finalize(tree)
        nu = tree.bodies[self.mobilizers[0]].mobilizer.nu
        if not 0 <= self.which_u < nu:
            raise TopologyError(f"{self!r}: speed index {self.which_u} out of range for a mobilizer with nu={nu}")

    def calc_jacobian(self, kin):
        D = np.zeros((1, self.num_constrained_mobilities(kin.tree)))
        D[0, self.which_u] = 1.0
        return np.zeros((0, 1, 6)), D

    def calc_velocity_offset(self, kin):
        return np.array([-self.speed])

    def calc_acceleration_bias(self, kin):
        return np.zeros(1)


CONSTRAINT_KINDS = {
    cls.kind: cls for cls in (Ball, ConstantOrientation, Weld, Rod, PointInPlane, ConstantSpeed)
}
