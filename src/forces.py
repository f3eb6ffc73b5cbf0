"""Force elements and the force subsystem.

Each element adds spatial forces (moment about the body origin, force;
expressed in Ground) to a per-body array and generalized forces to a
per-mobility array. Elements read kinematics through the matter
subsystem, which realizes the state lazily as needed.
"""

from typing import List

import numpy as np

from multibody.errors import TopologyError


def _body_index(body) -> int:
    return int(getattr(body, 'index', body))


def _check_body(element, tree, body: int) -> None:
    if not 0 <= body < tree.num_bodies:
        raise TopologyError(f"{element!r} refers to body {body}, which is not in the tree")


def _check_mobility(element, tree, body: int, which: int) -> None:
    _check_body(element, tree, body)
    mobilizer = tree.bodies[body].mobilizer
    size = 0 if mobilizer is None else mobilizer.nu
    if not 0 <= which < size:
        raise TopologyError(f"{element!r} refers to mobility {which} of body {body}, which has {size}")


class Force:
    """Base class of force elements."""

    def calc_force(self, matter, state, body_forces: np.ndarray, mobility_forces: np.ndarray) -> None:
        """Accumulate this element's contribution in place.

        Args:
            matter: Matter subsystem the state belongs to.
            state: State realized at least to Velocity.
            body_forces: (n_bodies, 6) spatial forces in Ground.
            mobility_forces: (nu,) generalized forces.
        """
        raise NotImplementedError

    def finalize(self, tree) -> None:
        """Check body and mobility references against the finalized tree."""

    def calc_potential_energy(self, matter, state) -> float:
        return 0.0

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class UniformGravity(Force):
    """Gravity acting at every body's center of mass."""

    def __init__(self, gravity) -> None:
        self.gravity = np.asarray(gravity, dtype=np.float64).flatten()
        if self.gravity.shape != (3,):
            raise ValueError(f"Expected gravity of length 3, got {self.gravity.shape}")

    def calc_force(self, matter, state, body_forces, mobility_forces):
        for index in range(1, matter.num_bodies):
            props = matter.tree.bodies[index].mass_properties
            if props.mass == 0:
                continue
            R_GB = matter.get_body_rotation(state, index)
            f = props.mass * self.gravity
            body_forces[index, :3] += np.cross(R_GB @ props.com, f)
            body_forces[index, 3:] += f

    def calc_potential_energy(self, matter, state):
        energy = 0.0
        for index in range(1, matter.num_bodies):
            props = matter.tree.bodies[index].mass_properties
            p_com = matter.find_station_location_in_ground(state, index, props.com)
            energy -= props.mass * np.dot(self.gravity, p_com)
        return energy


class ConstantTorque(Force):
    """Constant torque on a body, given in Ground."""

    def __init__(self, body, torque) -> None:
        self.body = _body_index(body)
        self.torque = np.asarray(torque, dtype=np.float64).flatten()

    def finalize(self, tree):
        _check_body(self, tree, self.body)

    def calc_force(self, matter, state, body_forces, mobility_forces):
        body_forces[self.body, :3] += self.torque


class ConstantForce(Force):
    """Constant force, given in Ground, applied at a station of a body."""

    def __init__(self, body, station, force) -> None:
        self.body = _body_index(body)
        self.station = np.asarray(station, dtype=np.float64).flatten()
        self.force = np.asarray(force, dtype=np.float64).flatten()

    def finalize(self, tree):
        _check_body(self, tree, self.body)

    def calc_force(self, matter, state, body_forces, mobility_forces):
        r = matter.get_body_rotation(state, self.body) @ self.station
        body_forces[self.body, :3] += np.cross(r, self.force)
        body_forces[self.body, 3:] += self.force


class MobilityConstantForce(Force):
    """Constant generalized force on one mobility of a mobilizer."""

    def __init__(self, body, which_u: int, force: float) -> None:
        self.body = _body_index(body)
        self.which_u = int(which_u)
        self.force = float(force)

    def finalize(self, tree):
        _check_mobility(self, tree, self.body, self.which_u)

    def calc_force(self, matter, state, body_forces, mobility_forces):
        mobility_forces[matter.tree.u_slice(self.body).start + self.which_u] += self.force


class MobilityLinearSpring(Force):
    """Linear spring on one coordinate of a mobilizer whose qdot equals u.

    τ = -k (q - q0), E = k (q - q0)^2 / 2.
    """

    def __init__(self, body, which_q: int, stiffness: float, q0: float = 0.0) -> None:
        self.body = _body_index(body)
        self.which_q = int(which_q)
        self.stiffness = float(stiffness)
        self.q0 = float(q0)

    def finalize(self, tree):
        _check_mobility(self, tree, self.body, self.which_q)
        mobilizer = tree.bodies[self.body].mobilizer
        if mobilizer.nq != mobilizer.nu:
            raise TopologyError(f"{self!r} needs a mobilizer whose qdot equals u, got {type(mobilizer).__name__}")

    def _stretch(self, matter, state) -> float:
        return matter.get_mobilized_body(self.body).get_q(state)[self.which_q] - self.q0

    def calc_force(self, matter, state, body_forces, mobility_forces):
        mobility_forces[matter.tree.u_slice(self.body).start + self.which_q] -= \
            self.stiffness * self._stretch(matter, state)

    def calc_potential_energy(self, matter, state):
        return 0.5 * self.stiffness * self._stretch(matter, state) ** 2


class MobilityLinearDamper(Force):
    """Linear damper on one generalized speed of the body's own mobilizer: τ = -c u."""

    def __init__(self, body, which_u: int, damping: float) -> None:
        self.body = _body_index(body)
        self.which_u = int(which_u)
        self.damping = float(damping)

    def finalize(self, tree):
        _check_mobility(self, tree, self.body, self.which_u)

    def calc_force(self, matter, state, body_forces, mobility_forces):
        index = matter.tree.u_slice(self.body).start + self.which_u
        mobility_forces[index] -= self.damping * state.u[index]


class TwoPointLinearSpring(Force):
    """Spring between stations on two bodies with natural length x0."""

    def __init__(self, body1, station1, body2, station2, stiffness: float, x0: float) -> None:
        self.body1 = _body_index(body1)
        self.body2 = _body_index(body2)
        self.station1 = np.asarray(station1, dtype=np.float64).flatten()
        self.station2 = np.asarray(station2, dtype=np.float64).flatten()
        self.stiffness = float(stiffness)
        self.x0 = float(x0)

    def finalize(self, tree):
        _check_body(self, tree, self.body1)
        _check_body(self, tree, self.body2)

    def _geometry(self, matter, state):
        p1 = matter.find_station_location_in_ground(state, self.body1, self.station1)
        p2 = matter.find_station_location_in_ground(state, self.body2, self.station2)
        d = p2 - p1
        return p1, p2, d, float(np.linalg.norm(d))

    def calc_force(self, matter, state, body_forces, mobility_forces):
        p1, p2, d, length = self._geometry(matter, state)
        if length == 0:
            return
        f = self.stiffness * (length - self.x0) * d / length
        for body, point, force in ((self.body1, p1, f), (self.body2, p2, -f)):
            r = point - matter.get_body_origin_location(state, body)
            body_forces[body, :3] += np.cross(r, force)
            body_forces[body, 3:] += force

    def calc_potential_energy(self, matter, state):
        _, _, _, length = self._geometry(matter, state)
        return 0.5 * self.stiffness * (length - self.x0) ** 2


class GlobalDamper(Force):
    """Damping on every generalized speed: τ = -c u."""

    def __init__(self, damping: float) -> None:
        self.damping = float(damping)

    def calc_force(self, matter, state, body_forces, mobility_forces):
        mobility_forces -= self.damping * state.u


class ForceSubsystem:
    """Collection of force elements acting on one matter subsystem."""

    def __init__(self) -> None:
        self.elements: List[Force] = []
        self._locked = False

    def add(self, element: Force) -> Force:
        if self._locked:
            raise TopologyError("Force elements cannot be added after topology has been realized")
        if not isinstance(element, Force):
            raise TypeError(f"Expected a Force element, got {type(element).__name__}")
        self.elements.append(element)
        return element

    def finalize(self, tree) -> None:
        """Validate every element against the finalized tree and lock the subsystem."""
        for element in self.elements:
            element.finalize(tree)
        self._locked = True

    def calc_forces(self, matter, state):
        """Total applied forces.

        Returns:
            Tuple of (n_bodies, 6) body forces and (nu,) mobility forces.
        """
        body_forces = np.zeros((matter.num_bodies, 6))
        mobility_forces = np.zeros(matter.nu)
        for element in self.elements:
            element.calc_force(matter, state, body_forces, mobility_forces)
        body_forces[0] = 0.0
        return body_forces, mobility_forces

    def calc_potential_energy(self, matter, state) -> float:
        return float(sum(element.calc_potential_energy(matter, state) for element in self.elements))
