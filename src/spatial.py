"""Spatial algebra for rigid-body kinematics.

Uses pymlg for SO(3)/SE(3) matrix operations and scipy's Rotation for
quaternion and rotation-vector conversions.

Conventions:
- Transforms are (4, 4) homogeneous matrices X_AB giving the pose of frame B
  in frame A (maps B coordinates to A coordinates).
- Spatial vectors are (6,) arrays [angular, linear]. For velocities the
  linear part is the velocity of a specific point (usually a body origin);
  for forces the angular part is the moment about that point.
- Quaternions are scalar-first [w, x, y, z].
"""

import numpy as np
from pymlg import SE3, SO3
from scipy.spatial.transform import Rotation


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix [v]x, so that [v]x @ a == v x a."""
    return SO3.wedge(np.asarray(v, dtype=np.float64).flatten())


def unskew(S: np.ndarray) -> np.ndarray:
    return SO3.vee(S).flatten()


def adjoint(T: np.ndarray) -> np.ndarray:
    """(6, 6) adjoint of a pose acting on [ω, v] twists.

    For T = (R, p) this is [[R, 0], [[p]x R, R]].
    """
    return SE3.adjoint(np.asarray(T, dtype=np.float64))


def inverse_transform(T: np.ndarray) -> np.ndarray:
    return SE3.inverse(np.asarray(T, dtype=np.float64))


def transform_from_rotation_translation(R: np.ndarray, p: np.ndarray) -> np.ndarray:
    """(4, 4) pose with rotation R and translation p."""
    return SE3.from_components(np.asarray(R, dtype=np.float64),
                               np.asarray(p, dtype=np.float64).flatten())


def transform_from_translation(p) -> np.ndarray:
    """Pure translation transform."""
    return transform_from_rotation_translation(np.eye(3), p)


def transform_from_rotation(R: np.ndarray) -> np.ndarray:
    """Pure rotation transform."""
    return transform_from_rotation_translation(R, np.zeros(3))


def rotation_about_axis(axis, angle: float) -> np.ndarray:
    """Rotation matrix for a right-handed rotation about an axis.

    Args:
        axis: Axis index (0, 1, 2 for x, y, z) or a (3,) direction vector.
        angle: Rotation angle [rad].

    Returns:
        (3, 3) rotation matrix.
    """
    if isinstance(axis, (int, np.integer)):
        direction = np.zeros(3)
        direction[axis] = 1.0
    else:
        direction = np.asarray(axis, dtype=np.float64).flatten()
        direction = direction / np.linalg.norm(direction)
    return Rotation.from_rotvec(direction * angle).as_matrix()


def rotation_from_rotation_vector(phi: np.ndarray) -> np.ndarray:
    """Rotation matrix exp([phi]) for a rotation vector phi."""
    return Rotation.from_rotvec(np.asarray(phi, dtype=np.float64).flatten()).as_matrix()


def quaternion_to_rotation(q: np.ndarray) -> np.ndarray:
    """Convert a scalar-first quaternion to a rotation matrix.

    The quaternion does not have to be normalized; the rotation of the
    normalized quaternion is returned.

    Args:
        q: (4,) quaternion [w, x, y, z].

    Returns:
        (3, 3) rotation matrix.
    """
    q = np.asarray(q, dtype=np.float64).flatten()
    return Rotation.from_quat(q[[1, 2, 3, 0]]).as_matrix()


def rotation_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert a rotation matrix to a unit scalar-first quaternion with w >= 0."""
    xyzw = Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_quat()
    q = xyzw[[3, 0, 1, 2]]
    if q[0] < 0:
        q = -q
    return q


def normalize_quaternion(q: np.ndarray) -> np.ndarray:
    q = np.asarray(q, dtype=np.float64).flatten()
    return q / np.linalg.norm(q)


def quaternion_rate_matrix(q: np.ndarray) -> np.ndarray:
    """Matrix E(q) with qdot = E(q) w for an angular velocity w in the outer frame.

    For R_FM(q) rotating with angular velocity w_FM expressed in F:
        qdot = 1/2 [0, w] (x) q
             = 1/2 [[-e^T        ],
                    [w0*I - [e]  ]] w

    Args:
        q: (4,) quaternion [w, x, y, z]; normalized before use.

    Returns:
        (4, 3) quaternion rate matrix.
    """
    q = normalize_quaternion(q)
    E = np.zeros((4, 3))
    E[0, :] = -q[1:]
    E[1:, :] = q[0] * np.eye(3) - skew(q[1:])
    return 0.5 * E


def rotation_angle_between(R1: np.ndarray, R2: np.ndarray) -> float:
    """Angle of the relative rotation R1^T R2 [rad].

    Computed from the quaternion of the relative rotation, which keeps full
    precision for tiny angles (unlike arccos of the trace).
    """
    R_rel = np.asarray(R1, dtype=np.float64).T @ np.asarray(R2, dtype=np.float64)
    return float(Rotation.from_matrix(R_rel).magnitude())


def is_same_rotation_to_within_angle(R1: np.ndarray, R2: np.ndarray, angle: float) -> bool:
    """Check whether two rotations differ by at most `angle` about some axis."""
    return rotation_angle_between(R1, R2) <= angle


def is_same_transform(X1: np.ndarray, X2: np.ndarray, tol: float) -> bool:
    """Compare translations component-wise and rotations by angle."""
    X1 = np.asarray(X1, dtype=np.float64)
    X2 = np.asarray(X2, dtype=np.float64)
    if np.any(np.abs(X1[:3, 3] - X2[:3, 3]) >= tol):
        return False
    return is_same_rotation_to_within_angle(X1[:3, :3], X2[:3, :3], tol)


def rotate_spatial(R: np.ndarray, V: np.ndarray) -> np.ndarray:
    """Re-express a spatial vector in a rotated frame: [R w, R v].

    The reference point is unchanged.
    """
    V = np.asarray(V, dtype=np.float64)
    return np.concatenate([R @ V[:3], R @ V[3:]])


def rotate_spatial_matrix(R: np.ndarray) -> np.ndarray:
    """(6, 6) block-diagonal matrix diag(R, R); equals Ad of a pure rotation."""
    return adjoint(transform_from_rotation(R))


def shift_matrix(r: np.ndarray) -> np.ndarray:
    """Rigid shift of a spatial velocity by the vector r.

    S(r) = [[ I,     0],
            [-[r],   I]]

    so that S(r) [w, v] = [w, v + w x r]. Forces shift with S(r)^T in the
    opposite direction: S(r)^T [m, f] = [m + r x f, f].

    Args:
        r: (3,) vector from the old reference point to the new one.

    Returns:
        (6, 6) shift matrix.
    """
    S = np.eye(6)
    S[3:, :3] = -skew(r)
    return S


def shift_velocity(V: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Velocity of the point displaced by r on the same rigid body."""
    V = np.asarray(V, dtype=np.float64)
    return np.concatenate([V[:3], V[3:] + np.cross(V[:3], r)])


def shift_acceleration(A: np.ndarray, w: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Classical acceleration of the point displaced by r on the same rigid body.

    a_new = a + alpha x r + w x (w x r)
    """
    A = np.asarray(A, dtype=np.float64)
    return np.concatenate([A[:3], A[3:] + np.cross(A[:3], r) + np.cross(w, np.cross(w, r))])


def shift_force(F: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Move the reference point of a spatial force by r.

    The force stays the same; the moment about the new point is
    m_new = m - r x f.
    """
    F = np.asarray(F, dtype=np.float64)
    return np.concatenate([F[:3] - np.cross(r, F[3:]), F[3:]])


def spatial_force_at_point(force: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Spatial force about a reference point for a force applied at offset r."""
    force = np.asarray(force, dtype=np.float64).flatten()
    return np.concatenate([np.cross(r, force), force])
