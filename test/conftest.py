"""Pytest fixtures for multibody tests."""

import numpy as np
import pytest

from multibody.constraints import Ball as BallConstraint
from multibody.forces import (
    ConstantForce,
    GlobalDamper,
    MobilityLinearDamper,
    MobilityLinearSpring,
    TwoPointLinearSpring,
    UniformGravity,
)
from multibody.mobilizers import (
    Ball,
    Cylinder,
    Free,
    Pin,
    Planar,
    Slider,
    Translation,
    Universal,
    Weld,
)
from multibody.spatial import rotation_from_rotation_vector, transform_from_rotation_translation
from multibody.spatial_inertia import MassProperties
from multibody.system import MultibodySystem


def random_transform(rng: np.random.Generator, scale: float = 0.5) -> np.ndarray:
    """Random rigid transform with a rotation angle below ~1 rad."""
    R = rotation_from_rotation_vector(rng.uniform(-0.6, 0.6, 3))
    return transform_from_rotation_translation(R, scale * rng.standard_normal(3))


def random_mass_properties(rng: np.random.Generator) -> MassProperties:
    """Random body with an off-origin CoM and a full central inertia."""
    mass = rng.uniform(0.5, 2.0)
    A = rng.standard_normal((3, 3))
    J_c = 0.05 * A @ A.T + 0.1 * np.eye(3)
    return MassProperties.from_central_inertia(mass, 0.3 * rng.standard_normal(3), J_c)


def randomize_state(system: MultibodySystem, state, rng: np.random.Generator) -> None:
    """Standard normal q and u, with quaternions normalized."""
    state.set_y(rng.standard_normal(state.ny))
    system.matter.normalize_quaternions(state)


@pytest.fixture
def randomize():
    """Function that fills a state with random q and u."""
    return randomize_state


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def gravity_vector() -> np.ndarray:
    """Standard gravity vector [m/s^2]."""
    return np.array([0.0, -9.81, 0.0])


@pytest.fixture
def pendulum(gravity_vector):
    """Single pendulum on a Pin, CoM 1 m below the joint axis."""
    system = MultibodySystem()
    body = MassProperties.from_central_inertia(2.0, (0.0, -1.0, 0.0), 0.01)
    link = system.matter.add_mobilized_body(system.matter.ground, Pin(), body)
    system.forces.add(UniformGravity(gravity_vector))
    system.realize_topology()
    return system, link


@pytest.fixture
def double_pendulum(gravity_vector):
    """Two Pin links, each with its CoM at the far end of a 1 m bar."""
    system = MultibodySystem()
    matter = system.matter
    body = MassProperties.from_central_inertia(1.0, (0.0, -1.0, 0.0), 0.02)
    link1 = matter.add_mobilized_body(matter.ground, Pin(), body)
    link2 = matter.add_mobilized_body(link1, Pin(), body, transform_from_rotation_translation(
        np.eye(3), [0.0, -1.0, 0.0]))
    system.forces.add(UniformGravity(gravity_vector))
    system.realize_topology()
    return system, (link1, link2)


@pytest.fixture
def spherical_pendulum(gravity_vector):
    """Free body held to a Ground point by a Ball constraint."""
    system = MultibodySystem()
    matter = system.matter
    body = MassProperties.from_central_inertia(1.5, (0.0, 0.0, 0.0), (0.02, 0.03, 0.04))
    bob = matter.add_mobilized_body(matter.ground, Free(), body)
    constraint = matter.add_constraint(
        BallConstraint(matter.ground, [0.0, 0.0, 0.0], bob, [0.0, 0.8, 0.0]))
    system.forces.add(UniformGravity(gravity_vector))
    system.realize_topology()
    return system, bob, constraint


@pytest.fixture
def mixed_tree(gravity_vector):
    """Branched tree using every mobilizer kind, with random geometry and forces.

    Returns:
        (system, bodies) where bodies maps a name to its mobilized body.
    """
    rng = np.random.default_rng(7)
    system = MultibodySystem()
    matter = system.matter
    ground = matter.ground

    def add(parent, mobilizer):
        return matter.add_mobilized_body(parent, mobilizer, random_mass_properties(rng),
                                         random_transform(rng), random_transform(rng))

    bodies = {}
    bodies['pin'] = add(ground, Pin())
    bodies['universal'] = add(bodies['pin'], Universal())
    bodies['ball'] = add(bodies['universal'], Ball())
    bodies['free'] = add(bodies['ball'], Free())
    bodies['slider'] = add(bodies['pin'], Slider())
    bodies['cylinder'] = add(bodies['slider'], Cylinder())
    bodies['planar'] = add(ground, Planar())
    bodies['translation'] = add(bodies['planar'], Translation())
    bodies['weld'] = add(bodies['translation'], Weld())

    forces = system.forces
    forces.add(UniformGravity(gravity_vector))
    forces.add(MobilityLinearSpring(bodies['pin'], 0, 3.0, 0.2))
    forces.add(MobilityLinearDamper(bodies['slider'], 0, 0.5))
    forces.add(TwoPointLinearSpring(bodies['universal'], [0.1, 0.0, 0.2],
                                    bodies['cylinder'], [0.0, 0.3, 0.0], 20.0, 0.4))
    forces.add(ConstantForce(bodies['free'], [0.2, 0.1, 0.0], [1.0, -2.0, 0.5]))
    forces.add(GlobalDamper(0.05))
    system.realize_topology()
    return system, bodies
