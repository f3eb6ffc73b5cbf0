"""Mobilizer (joint) models.

A mobilizer relates the outboard frame M on a child body to the inboard
frame F on its parent through nq generalized coordinates and nu
generalized speeds:

    X_FM = calc_transform(q)
    V_FM = calc_h_matrix(q) @ u          (in F, at the origin of M)
    A_FM = calc_h_matrix(q) @ udot + calc_hdot_u(q, u)
    qdot = calc_n_matrix(q) @ u

Spatial vectors use the [angular, linear] convention. Quaternions in q are
scalar-first and are normalized before use.

Fit operations return a new coordinate (or speed) vector that reproduces a
given relative motion as closely as the joint allows. Components a fit does
not determine keep their current values.
"""

from typing import Optional

import numpy as np

from multibody.spatial import (
    normalize_quaternion,
    quaternion_rate_matrix,
    quaternion_to_rotation,
    rotation_about_axis,
    rotation_to_quaternion,
    transform_from_rotation_translation,
)

_EX = np.array([1.0, 0.0, 0.0])
_EY = np.array([0.0, 1.0, 0.0])
_EZ = np.array([0.0, 0.0, 1.0])


def _quaternion_rate_matrix_unnormalized(qdot: np.ndarray) -> np.ndarray:
    """E(q) evaluated without normalization; E is linear in q."""
    E = np.zeros((4, 3))
    E[0, :] = -qdot[1:]
    E[1:, :] = qdot[0] * np.eye(3) - np.array([[0.0, -qdot[3], qdot[2]],
                                                [qdot[3], 0.0, -qdot[1]],
                                                [-qdot[2], qdot[1], 0.0]])
    return 0.5 * E


def _best_fit_angle_about_z(R: np.ndarray) -> float:
    """Angle of the rotation about z closest to R."""
    return float(np.arctan2(R[1, 0] - R[0, 1], R[0, 0] + R[1, 1]))


class Mobilizer:
    """Base class of the joint kinds.

    Subclasses set `nq` and `nu` and implement the kinematic maps. The
    default implementations below cover joints whose q and u coincide
    (qdot = u) and whose H matrix is constant.
    """

    nq = 0
    nu = 0
    kind = "Mobilizer"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def default_q(self) -> np.ndarray:
        return np.zeros(self.nq)

    def quaternion_slice(self) -> Optional[slice]:
        """Location of a quaternion inside this joint's q, if any."""
        return None

    def normalize_q(self, q: np.ndarray) -> np.ndarray:
        q = np.array(q, dtype=np.float64)
        quat = self.quaternion_slice()
        if quat is not None:
            q[quat] = normalize_quaternion(q[quat])
        return q

    def calc_transform(self, q: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def calc_h_matrix(self, q: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def calc_hdot_u(self, q: np.ndarray, u: np.ndarray) -> np.ndarray:
        return np.zeros(6)

    def calc_velocity(self, q: np.ndarray, u: np.ndarray) -> np.ndarray:
        """V_FM in F at the origin of M."""
        return self.calc_h_matrix(q) @ u

    def calc_n_matrix(self, q: np.ndarray) -> np.ndarray:
        return np.eye(self.nq, self.nu)

    def calc_qdot(self, q: np.ndarray, u: np.ndarray) -> np.ndarray:
        return self.calc_n_matrix(q) @ u

    def calc_qdotdot(self, q: np.ndarray, u: np.ndarray, udot: np.ndarray) -> np.ndarray:
        return self.calc_n_matrix(q) @ udot

    # Fits. Each takes the current coordinates (or speeds) and returns the
    # updated vector.

    def q_to_fit_rotation(self, q: np.ndarray, R_FM: np.ndarray) -> np.ndarray:
        return np.array(q, dtype=np.float64)

    def q_to_fit_translation(self, q: np.ndarray, p_FM: np.ndarray) -> np.ndarray:
        return np.array(q, dtype=np.float64)

    def q_to_fit_transform(self, q: np.ndarray, X_FM: np.ndarray) -> np.ndarray:
        X_FM = np.asarray(X_FM, dtype=np.float64)
        q = self.q_to_fit_rotation(q, X_FM[:3, :3])
        return self.q_to_fit_translation(q, X_FM[:3, 3])

    def u_to_fit_angular_velocity(self, q: np.ndarray, u: np.ndarray, w_FM: np.ndarray) -> np.ndarray:
        return np.array(u, dtype=np.float64)

    def u_to_fit_linear_velocity(self, q: np.ndarray, u: np.ndarray, v_FM: np.ndarray) -> np.ndarray:
        return np.array(u, dtype=np.float64)

    def u_to_fit_velocity(self, q: np.ndarray, u: np.ndarray, V_FM: np.ndarray) -> np.ndarray:
        V_FM = np.asarray(V_FM, dtype=np.float64)
        u = self.u_to_fit_angular_velocity(q, u, V_FM[:3])
        return self.u_to_fit_linear_velocity(q, u, V_FM[3:])


class Weld(Mobilizer):
    """No relative motion; X_FM is the identity."""

    kind = "Weld"

    def calc_transform(self, q):
        return np.eye(4)

    def calc_h_matrix(self, q):
        return np.zeros((6, 0))


class Pin(Mobilizer):
    """Rotation about the common z axis of F and M."""

    nq = 1
    nu = 1
    kind = "Pin"

    def calc_transform(self, q):
        return transform_from_rotation_translation(rotation_about_axis(2, q[0]), np.zeros(3))

    def calc_h_matrix(self, q):
        H = np.zeros((6, 1))
        H[2, 0] = 1.0
        return H

    def q_to_fit_rotation(self, q, R_FM):
        q = np.array(q, dtype=np.float64)
        q[0] = _best_fit_angle_about_z(np.asarray(R_FM))
        return q

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        u = np.array(u, dtype=np.float64)
        u[0] = w_FM[2]
        return u


class Slider(Mobilizer):
    """Translation along the common x axis of F and M."""

    nq = 1
    nu = 1
    kind = "Slider"

    def calc_transform(self, q):
        return transform_from_rotation_translation(np.eye(3), q[0] * _EX)

    def calc_h_matrix(self, q):
        H = np.zeros((6, 1))
        H[3, 0] = 1.0
        return H

    def q_to_fit_translation(self, q, p_FM):
        q = np.array(q, dtype=np.float64)
        q[0] = p_FM[0]
        return q

    def u_to_fit_linear_velocity(self, q, u, v_FM):
        u = np.array(u, dtype=np.float64)
        u[0] = v_FM[0]
        return u


class Cylinder(Mobilizer):
    """Rotation about and translation along the common z axis.

    q = [angle, distance], u = [angular rate, linear rate].
    """

    nq = 2
    nu = 2
    kind = "Cylinder"

    def calc_transform(self, q):
        return transform_from_rotation_translation(rotation_about_axis(2, q[0]), q[1] * _EZ)

    def calc_h_matrix(self, q):
        H = np.zeros((6, 2))
        H[2, 0] = 1.0
        H[5, 1] = 1.0
        return H

    def q_to_fit_rotation(self, q, R_FM):
        q = np.array(q, dtype=np.float64)
        q[0] = _best_fit_angle_about_z(np.asarray(R_FM))
        return q

    def q_to_fit_translation(self, q, p_FM):
        q = np.array(q, dtype=np.float64)
        q[1] = p_FM[2]
        return q

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        u = np.array(u, dtype=np.float64)
        u[0] = w_FM[2]
        return u

    def u_to_fit_linear_velocity(self, q, u, v_FM):
        u = np.array(u, dtype=np.float64)
        u[1] = v_FM[2]
        return u


class Universal(Mobilizer):
    """Rotation about x by q0, then about the new y axis by q1.

    R_FM = Rx(q0) @ Ry(q1). The speeds are the two angle rates.
    """

    nq = 2
    nu = 2
    kind = "Universal"

    def calc_transform(self, q):
        R = rotation_about_axis(0, q[0]) @ rotation_about_axis(1, q[1])
        return transform_from_rotation_translation(R, np.zeros(3))

    def calc_h_matrix(self, q):
        H = np.zeros((6, 2))
        H[:3, 0] = _EX
        H[:3, 1] = rotation_about_axis(0, q[0]) @ _EY
        return H

    def calc_hdot_u(self, q, u):
        # Only the second axis moves, rotating about x at rate u0.
        y_axis = rotation_about_axis(0, q[0]) @ _EY
        hdot_u = np.zeros(6)
        hdot_u[:3] = u[0] * u[1] * np.cross(_EX, y_axis)
        return hdot_u

    def q_to_fit_rotation(self, q, R_FM):
        R = np.asarray(R_FM, dtype=np.float64)
        q = np.array(q, dtype=np.float64)
        q[0] = np.arctan2(-R[1, 2], R[2, 2])
        q[1] = np.arctan2(R[0, 2], np.hypot(R[1, 2], R[2, 2]))
        return q

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        # The two axes are orthonormal, so the least squares fit is a projection.
        H = self.calc_h_matrix(q)[:3]
        return H.T @ np.asarray(w_FM, dtype=np.float64)


class Planar(Mobilizer):
    """Rotation about z plus translation in the x-y plane of F.

    q = [angle, x, y], u = [angular rate, x rate, y rate].
    """

    nq = 3
    nu = 3
    kind = "Planar"

    def calc_transform(self, q):
        return transform_from_rotation_translation(rotation_about_axis(2, q[0]),
                                                   np.array([q[1], q[2], 0.0]))

    def calc_h_matrix(self, q):
        H = np.zeros((6, 3))
        H[2, 0] = 1.0
        H[3, 1] = 1.0
        H[4, 2] = 1.0
        return H

    def q_to_fit_rotation(self, q, R_FM):
        q = np.array(q, dtype=np.float64)
        q[0] = _best_fit_angle_about_z(np.asarray(R_FM))
        return q

    def q_to_fit_translation(self, q, p_FM):
        q = np.array(q, dtype=np.float64)
        q[1:3] = p_FM[:2]
        return q

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        u = np.array(u, dtype=np.float64)
        u[0] = w_FM[2]
        return u

    def u_to_fit_linear_velocity(self, q, u, v_FM):
        u = np.array(u, dtype=np.float64)
        u[1:3] = v_FM[:2]
        return u


class Ball(Mobilizer):
    """Unrestricted rotation about the common origin of F and M.

    q is a quaternion [w, x, y, z]; u is the angular velocity of M in F,
    expressed in F.
    """

    nq = 4
    nu = 3
    kind = "Ball"

    def default_q(self):
        return np.array([1.0, 0.0, 0.0, 0.0])

    def quaternion_slice(self):
        return slice(0, 4)

    def calc_transform(self, q):
        return transform_from_rotation_translation(quaternion_to_rotation(q[:4]), np.zeros(3))

    def calc_h_matrix(self, q):
        H = np.zeros((6, 3))
        H[:3, :] = np.eye(3)
        return H

    def calc_n_matrix(self, q):
        return quaternion_rate_matrix(q[:4])

    def calc_qdotdot(self, q, u, udot):
        qdot = self.calc_qdot(q, u)
        return quaternion_rate_matrix(q[:4]) @ udot + _quaternion_rate_matrix_unnormalized(qdot) @ u

    def q_to_fit_rotation(self, q, R_FM):
        return rotation_to_quaternion(R_FM)

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        return np.array(w_FM, dtype=np.float64).flatten()


class Translation(Mobilizer):
    """Unrestricted translation with F and M kept parallel.

    q is the position of the M origin in F; u its velocity, both in F.
    """

    nq = 3
    nu = 3
    kind = "Translation"

    def calc_transform(self, q):
        return transform_from_rotation_translation(np.eye(3), q[:3])

    def calc_h_matrix(self, q):
        H = np.zeros((6, 3))
        H[3:, :] = np.eye(3)
        return H

    def q_to_fit_translation(self, q, p_FM):
        return np.array(p_FM, dtype=np.float64).flatten()

    def u_to_fit_linear_velocity(self, q, u, v_FM):
        return np.array(v_FM, dtype=np.float64).flatten()


class Free(Mobilizer):
    """Unrestricted rigid motion.

    q = [quaternion (4), p_FM (3)], u = [w_FM (3), v_FM (3)], all in F.
    """

    nq = 7
    nu = 6
    kind = "Free"

    def default_q(self):
        return np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])

    def quaternion_slice(self):
        return slice(0, 4)

    def calc_transform(self, q):
        return transform_from_rotation_translation(quaternion_to_rotation(q[:4]), q[4:7])

    def calc_h_matrix(self, q):
        return np.eye(6)

    def calc_n_matrix(self, q):
        N = np.zeros((7, 6))
        N[:4, :3] = quaternion_rate_matrix(q[:4])
        N[4:, 3:] = np.eye(3)
        return N

    def calc_qdotdot(self, q, u, udot):
        qdot = self.calc_qdot(q, u)
        qdotdot = self.calc_n_matrix(q) @ udot
        qdotdot[:4] += _quaternion_rate_matrix_unnormalized(qdot[:4]) @ u[:3]
        return qdotdot

    def q_to_fit_rotation(self, q, R_FM):
        q = np.array(q, dtype=np.float64)
        q[:4] = rotation_to_quaternion(R_FM)
        return q

    def q_to_fit_translation(self, q, p_FM):
        q = np.array(q, dtype=np.float64)
        q[4:7] = np.asarray(p_FM, dtype=np.float64).flatten()
        return q

    def u_to_fit_angular_velocity(self, q, u, w_FM):
        u = np.array(u, dtype=np.float64)
        u[:3] = np.asarray(w_FM, dtype=np.float64).flatten()
        return u

    def u_to_fit_linear_velocity(self, q, u, v_FM):
        u = np.array(u, dtype=np.float64)
        u[3:] = np.asarray(v_FM, dtype=np.float64).flatten()
        return u


MOBILIZER_KINDS = {
    cls.kind: cls
    for cls in (Weld, Pin, Slider, Cylinder, Universal, Planar, Ball, Translation, Free)
}


def make_mobilizer(kind: str) -> Mobilizer:
    """Create a mobilizer from its kind name (case-insensitive)."""
    for name, cls in MOBILIZER_KINDS.items():
        if name.lower() == kind.lower():
            return cls()
    raise ValueError(f"Unknown mobilizer kind {kind!r}; expected one of {sorted(MOBILIZER_KINDS)}")
