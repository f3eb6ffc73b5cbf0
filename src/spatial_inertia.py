"""Mass properties and 6x6 spatial inertias.

Spatial inertias act on [ω, v] velocities, v being the velocity of the
reference point.

The spatial inertia about a body origin o relates the body's spatial
velocity to its spatial momentum about o:
    [h_o]   [[J_o,      m*[p]×],  [ω  ]
    [ l ] =  [m*[p]×^T,  m*I_3 ]] @ [v_o]

where p is the vector from o to the center of mass.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np
from pymlg.numpy import SE3

from multibody.spatial import skew, unskew


def _as_inertia_matrix(inertia) -> np.ndarray:
    """Accept a scalar (sphere-like), principal moments, or a full 3x3 tensor."""
    arr = np.asarray(inertia, dtype=np.float64)
    if arr.ndim == 0:
        return float(arr) * np.eye(3)
    if arr.shape == (3,):
        return np.diag(arr)
    if arr.shape == (3, 3):
        return arr.copy()
    raise ValueError(f"Expected inertia as scalar, (3,) or (3, 3), got shape {arr.shape}")


@dataclass(frozen=True, eq=False)
class MassProperties:
    """Mass properties of a rigid body, expressed in the body frame.

    Attributes:
        mass: Body mass [kg].
        com: (3,) center of mass location measured from the body origin [m].
        inertia: (3, 3) rotational inertia about the body origin [kg*m^2].
    """

    mass: float
    com: np.ndarray
    inertia: np.ndarray

    def __init__(self, mass: float, com=(0.0, 0.0, 0.0),
                 inertia: Union[float, np.ndarray] = 0.0) -> None:
        com = np.asarray(com, dtype=np.float64).flatten()
        if com.shape != (3,):
            raise ValueError(f"Expected com of length 3, got {com.shape}")
        if mass < 0:
            raise ValueError(f"Mass must be non-negative, got {mass}")
        object.__setattr__(self, 'mass', float(mass))
        object.__setattr__(self, 'com', com)
        object.__setattr__(self, 'inertia', _as_inertia_matrix(inertia))

    @classmethod
    def from_central_inertia(cls, mass: float, com, inertia_at_com) -> "MassProperties":
        """Build mass properties from the inertia about the center of mass."""
        com = np.asarray(com, dtype=np.float64).flatten()
        J_c = _as_inertia_matrix(inertia_at_com)
        return cls(mass, com, J_c + _parallel_axis_term(mass, com))

    def inertia_about_com(self) -> np.ndarray:
        return self.inertia - _parallel_axis_term(self.mass, self.com)

    def spatial_inertia(self) -> np.ndarray:
        """(6, 6) spatial inertia about the body origin, in the body frame."""
        return spatial_inertia_about_origin(self.mass, self.com, self.inertia)

    def spatial_inertia_in_frame(self, R: np.ndarray) -> np.ndarray:
        """Spatial inertia about the body origin re-expressed in a frame rotated by R."""
        R = np.asarray(R, dtype=np.float64)
        return spatial_inertia_about_origin(self.mass, R @ self.com, R @ self.inertia @ R.T)


def _parallel_axis_term(mass: float, p: np.ndarray) -> np.ndarray:
    # m [p]x [p]x^T
    return mass * (np.dot(p, p) * np.eye(3) - np.outer(p, p))


def spatial_inertia_about_origin(mass: float, com: np.ndarray, inertia_about_origin: np.ndarray) -> np.ndarray:
    """Assemble [[J_o, m[p]x], [-m[p]x, m 1]] about a reference point o.

    Args:
        mass: Body mass [kg].
        com: (3,) CoM measured from o [m].
        inertia_about_origin: (3, 3) rotational inertia about o [kg*m^2].
    """
    mp = mass * skew(com)
    return np.block([[np.asarray(inertia_about_origin, dtype=np.float64), mp],
                     [-mp, mass * np.eye(3)]])


def spatial_inertia_at_com(mass: float, inertia: np.ndarray) -> np.ndarray:
    """Block-diagonal spatial inertia diag(J_c, m 1) about the CoM."""
    return spatial_inertia_about_origin(mass, np.zeros(3), inertia)


def spatial_inertia_at_frame(mass: float, inertia_at_com: np.ndarray, com_position: np.ndarray) -> np.ndarray:
    """Spatial inertia about a point that sees the CoM at `com_position`.

    The rotational block picks up the parallel axis term m [p]x [p]x^T.
    """
    p = np.asarray(com_position, dtype=np.float64).flatten()
    return spatial_inertia_about_origin(mass, p, np.asarray(inertia_at_com) + _parallel_axis_term(mass, p))


def transform_spatial_inertia(G: np.ndarray, T: np.ndarray) -> np.ndarray:
    """Move a spatial inertia from frame A into frame B.

    Args:
        G: (6, 6) spatial inertia in A.
        T: (4, 4) pose of A in B.

    Returns:
        Ad(T^-1)^T G Ad(T^-1), the spatial inertia in B.
    """
    Ad = SE3.adjoint(SE3.inverse(T))
    return Ad.T @ G @ Ad


def gyroscopic_force(G: np.ndarray, w: np.ndarray) -> np.ndarray:
    """Velocity-dependent inertial force b of a body about its origin.

    With A = [α, a_o] the classical acceleration of the origin, the
    Newton-Euler equations about the origin read F = G @ A + b with
        b = [ω × (J_o ω),  m ω × (ω × p)]

    Args:
        G: (6, 6) spatial inertia about the body origin.
        w: (3,) angular velocity, in the same frame as G.

    Returns:
        (6,) spatial force.
    """
    mass = G[3, 3]
    J_o = G[:3, :3]
    if mass > 0:
        p = unskew(G[:3, 3:] / mass)
    else:
        p = np.zeros(3)
    return np.concatenate([np.cross(w, J_o @ w), mass * np.cross(w, np.cross(w, p))])


def is_symmetric(G: np.ndarray, tol: float = 1e-10) -> bool:
    return bool(np.allclose(G, G.T, atol=tol))


def is_positive_definite(G: np.ndarray, tol: float = 1e-10) -> bool:
    """True when the smallest eigenvalue of the symmetric part exceeds `tol`."""
    return bool(np.linalg.eigvalsh(0.5 * (G + G.T))[0] > tol)
