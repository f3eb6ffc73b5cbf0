"""Tests for force elements and the force subsystem."""

import numpy as np
import pytest

from multibody.errors import TopologyError
from multibody.forces import (
    ConstantForce,
    ConstantTorque,
    ForceSubsystem,
    GlobalDamper,
    MobilityConstantForce,
    MobilityLinearDamper,
    MobilityLinearSpring,
    TwoPointLinearSpring,
    UniformGravity,
)
from multibody.mobilizers import Free, Pin, Slider
from multibody.spatial import rotation_from_rotation_vector, transform_from_rotation_translation
from multibody.spatial_inertia import MassProperties
from multibody.system import MultibodySystem


def applied_generalized_forces(matter, state):
    """Hᵀ F_app + τ_app, read off the inverse dynamics residual."""
    zero = np.zeros(matter.nu)
    return (matter.calc_residual_force(state, zero, include_applied_forces=False)
            - matter.calc_residual_force(state, zero))


@pytest.fixture
def conservative_tree(gravity_vector):
    """Pin, Free and Slider bodies loaded by gravity and springs only."""
    system = MultibodySystem()
    matter = system.matter
    body = MassProperties.from_central_inertia(1.2, (0.1, -0.4, 0.05), (0.03, 0.02, 0.04))
    tilted = transform_from_rotation_translation(rotation_from_rotation_vector([0.2, -0.3, 0.1]),
                                                 [0.0, -0.6, 0.1])
    pin = matter.add_mobilized_body(matter.ground, Pin(), body)
    free = matter.add_mobilized_body(pin, Free(), body, tilted)
    slider = matter.add_mobilized_body(pin, Slider(), body, tilted)

    forces = system.forces
    forces.add(UniformGravity(gravity_vector))
    forces.add(MobilityLinearSpring(pin, 0, 4.0, 0.3))
    forces.add(MobilityLinearSpring(slider, 0, 10.0, -0.1))
    forces.add(TwoPointLinearSpring(free, [0.2, 0.0, 0.1], slider, [0.0, 0.1, -0.2], 15.0, 0.5))
    system.realize_topology()
    return system


class TestElements:
    """Individual force elements."""

    def test_gravity(self, pendulum):
        system, link = pendulum
        state = system.get_default_state()
        link.set_q(state, [np.pi / 2])
        body_forces, mobility_forces = system.forces.calc_forces(system.matter, state)
        # CoM swings to (1, 0, 0)
        np.testing.assert_allclose(body_forces[link.index], [0.0, 0.0, -19.62, 0.0, -19.62, 0.0], atol=1e-12)
        np.testing.assert_array_equal(mobility_forces, np.zeros(1))

    def test_gravity_potential_energy(self, pendulum):
        system, link = pendulum
        state = system.get_default_state()
        assert system.calc_potential_energy(state) == pytest.approx(-19.62)
        link.set_q(state, [np.pi / 2])
        assert system.calc_potential_energy(state) == pytest.approx(0.0, abs=1e-12)

    def test_gravity_shape(self):
        with pytest.raises(ValueError):
            UniformGravity([0.0, -9.81])

    def test_constant_force_moment(self):
        system = MultibodySystem()
        link = system.matter.add_mobilized_body(system.matter.ground, Pin(), MassProperties(1.0))
        system.forces.add(ConstantForce(link, [1.0, 0.0, 0.0], [0.0, 2.0, 0.0]))
        system.realize_topology()
        state = system.get_default_state()
        body_forces, _ = system.forces.calc_forces(system.matter, state)
        np.testing.assert_allclose(body_forces[link.index], [0.0, 0.0, 2.0, 0.0, 2.0, 0.0])
        # The pin turns the station with the body
        link.set_q(state, [np.pi / 2])
        body_forces, _ = system.forces.calc_forces(system.matter, state)
        np.testing.assert_allclose(body_forces[link.index], [0.0, 0.0, 0.0, 0.0, 2.0, 0.0], atol=1e-12)

    def test_mobility_elements(self):
        system = MultibodySystem()
        link = system.matter.add_mobilized_body(system.matter.ground, Slider(), MassProperties(1.0))
        system.forces.add(MobilityLinearSpring(link, 0, 5.0, 0.2))
        system.forces.add(MobilityLinearDamper(link, 0, 0.5))
        system.forces.add(MobilityConstantForce(link, 0, 1.5))
        system.realize_topology()
        state = system.get_default_state()
        link.set_q(state, [0.6])
        link.set_u(state, [2.0])
        _, mobility_forces = system.forces.calc_forces(system.matter, state)
        assert mobility_forces[0] == pytest.approx(-5.0 * 0.4 - 0.5 * 2.0 + 1.5)
        assert system.calc_potential_energy(state) == pytest.approx(0.5 * 5.0 * 0.4 ** 2)

    def test_global_damper(self):
        system = MultibodySystem()
        link = system.matter.add_mobilized_body(system.matter.ground, Pin(), MassProperties(1.0))
        system.forces.add(GlobalDamper(0.3))
        system.realize_topology()
        state = system.get_default_state()
        link.set_u(state, [2.0])
        _, mobility_forces = system.forces.calc_forces(system.matter, state)
        np.testing.assert_allclose(mobility_forces, [-0.6])

    def test_two_point_spring_balances(self, conservative_tree):
        system = conservative_tree
        state = system.get_default_state()
        state.set_q(state.q + 0.3)
        system.matter.normalize_quaternions(state)
        spring = system.forces.elements[-1]
        body_forces = np.zeros((system.matter.num_bodies, 6))
        spring.calc_force(system.matter, state, body_forces, np.zeros(system.matter.nu))
        np.testing.assert_allclose(body_forces[spring.body1, 3:], -body_forces[spring.body2, 3:])
        assert np.linalg.norm(body_forces[spring.body1, 3:]) > 0

    def test_ground_row_is_zero(self):
        system = MultibodySystem()
        system.matter.add_mobilized_body(system.matter.ground, Pin(), MassProperties(1.0))
        system.forces.add(ConstantTorque(system.matter.ground, [1.0, 2.0, 3.0]))
        system.realize_topology()
        state = system.get_default_state()
        body_forces, _ = system.forces.calc_forces(system.matter, state)
        np.testing.assert_array_equal(body_forces[0], np.zeros(6))


class TestConservativeForces:
    """Generalized forces of potential-energy elements."""

    def test_power_matches_energy_rate(self, conservative_tree, rng):
        """τ·u = -dE/dt along qdot = N(q) u."""
        system = conservative_tree
        matter = system.matter
        state = system.get_default_state()
        state.set_y(np.concatenate([state.q + 0.4 * rng.standard_normal(state.nq),
                                    rng.standard_normal(state.nu)]))
        matter.normalize_quaternions(state)
        h = 1e-6
        qdot = matter.get_qdot(state)
        plus, minus = state.copy(), state.copy()
        plus.set_q(state.q + h * qdot)
        minus.set_q(state.q - h * qdot)
        rate = (system.calc_potential_energy(plus) - system.calc_potential_energy(minus)) / (2 * h)
        power = applied_generalized_forces(matter, state) @ state.u
        assert power == pytest.approx(-rate, rel=1e-6, abs=1e-6)

    def test_independent_of_speeds(self, conservative_tree, rng):
        system = conservative_tree
        matter = system.matter
        state = system.get_default_state()
        state.set_q(state.q + 0.2)
        matter.normalize_quaternions(state)
        before = applied_generalized_forces(matter, state)
        state.set_u(rng.standard_normal(state.nu))
        np.testing.assert_allclose(applied_generalized_forces(matter, state), before, atol=1e-12)


class TestForceSubsystem:
    """Element bookkeeping."""

    def test_type_check(self):
        with pytest.raises(TypeError):
            ForceSubsystem().add(object())

    def test_locked_after_topology(self, pendulum):
        system, _ = pendulum
        with pytest.raises(TopologyError):
            system.forces.add(GlobalDamper(1.0))

    def test_add_returns_element(self):
        forces = ForceSubsystem()
        damper = GlobalDamper(1.0)
        assert forces.add(damper) is damper
        assert forces.elements == [damper]


class TestElementReferences:
    """Elements are checked against the tree when topology is realized."""

    @pytest.fixture
    def chain(self):
        system = MultibodySystem()
        a = system.matter.add_mobilized_body(system.matter.ground, Pin(), MassProperties(1.0))
        b = system.matter.add_mobilized_body(a, Pin(), MassProperties(1.0))
        return system, a, b

    def test_mobility_index_past_own_mobilizer(self, chain):
        """Index 1 on a Pin is rejected even though the chain has nu = 2."""
        system, a, _ = chain
        system.forces.add(MobilityConstantForce(a, 1, 5.0))
        with pytest.raises(TopologyError):
            system.realize_topology()
        assert not system.topology_realized

    @pytest.mark.parametrize("element", [
        lambda a: MobilityLinearDamper(a, 1, 0.5),
        lambda a: MobilityLinearSpring(a, 3, 1.0),
        lambda a: MobilityConstantForce(a, -1, 1.0),
    ])
    def test_mobility_index_out_of_range(self, chain, element):
        system, a, _ = chain
        system.forces.add(element(a))
        with pytest.raises(TopologyError):
            system.realize_topology()

    @pytest.mark.parametrize("element", [
        lambda ground: MobilityLinearSpring(ground, 0, 1.0),
        lambda ground: MobilityLinearDamper(ground, 0, 1.0),
        lambda ground: MobilityConstantForce(ground, 0, 1.0),
    ])
    def test_mobility_element_on_ground(self, chain, element):
        system, _, _ = chain
        system.forces.add(element(system.matter.ground))
        with pytest.raises(TopologyError):
            system.realize_topology()

    @pytest.mark.parametrize("element", [
        lambda: ConstantTorque(7, [0.0, 0.0, 1.0]),
        lambda: ConstantForce(3, [0.0, 0.0, 0.0], [1.0, 0.0, 0.0]),
        lambda: TwoPointLinearSpring(1, [0.0, 0.0, 0.0], 9, [0.0, 0.0, 0.0], 1.0, 0.0),
        lambda: MobilityLinearDamper(5, 0, 1.0),
    ])
    def test_body_out_of_range(self, chain, element):
        system, _, _ = chain
        system.forces.add(element())
        with pytest.raises(TopologyError):
            system.realize_topology()

    def test_spring_needs_qdot_equal_u(self):
        system = MultibodySystem()
        body = system.matter.add_mobilized_body(system.matter.ground, Free(), MassProperties(1.0))
        system.forces.add(MobilityLinearSpring(body, 0, 1.0))
        with pytest.raises(TopologyError):
            system.realize_topology()

    def test_damper_indexes_own_mobilities(self, chain):
        system, _, b = chain
        system.forces.add(MobilityLinearDamper(b, 0, 0.5))
        system.realize_topology()
        state = system.get_default_state()
        state.set_u([1.0, 2.0])
        _, mobility_forces = system.forces.calc_forces(system.matter, state)
        np.testing.assert_allclose(mobility_forces, [0.0, -1.0])
