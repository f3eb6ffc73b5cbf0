"""Tests for mobilizer reaction forces on the twin-chain model."""

import numpy as np
import pytest

from multibody.newton_euler import calc_transmitted_forces
from multibody.spatial import is_same_transform
from multibody.stage import Stage
from multibody.verification import (
    VerificationConfig,
    build_reaction_force_scenario,
    prepare_twin_state,
    reaction_constraint_mismatch,
)

TOL = 1e-10


@pytest.fixture(scope="module")
def scenario():
    return build_reaction_force_scenario(VerificationConfig())


@pytest.fixture(scope="module", params=[0, 1, 2])
def twin_state(request, scenario):
    return prepare_twin_state(scenario, np.random.default_rng(request.param), TOL)


def test_twins_share_pose(scenario, twin_state):
    for reduced, twin in scenario.TWINS.items():
        a, b = scenario.bodies[reduced], scenario.bodies[twin]
        assert is_same_transform(a.get_body_transform(twin_state), b.get_body_transform(twin_state), TOL)


def test_twins_share_motion(scenario, twin_state):
    for reduced, twin in scenario.TWINS.items():
        a, b = scenario.bodies[reduced], scenario.bodies[twin]
        np.testing.assert_allclose(a.get_body_velocity(twin_state), b.get_body_velocity(twin_state),
                                   atol=TOL, err_msg=reduced)
        np.testing.assert_allclose(a.get_body_acceleration(twin_state), b.get_body_acceleration(twin_state),
                                   atol=1e-8, err_msg=reduced)


def test_constraints_satisfied(scenario, twin_state):
    matter = scenario.system.matter
    assert np.max(np.abs(matter.get_position_errors(twin_state))) <= TOL
    assert np.max(np.abs(matter.get_velocity_errors(twin_state))) <= TOL


def test_free_mobilizers_have_no_reaction(scenario, twin_state):
    for name in scenario.FREE:
        np.testing.assert_array_equal(scenario.bodies[name].get_mobilizer_reaction_force(twin_state),
                                      np.zeros(6))


def test_free_mobilizers_transmit_nothing(scenario, twin_state):
    """Each Free subtree balances on its own: nothing crosses its joint."""
    matter = scenario.system.matter
    pk = twin_state.get_cache(Stage.POSITION).kinematics
    dc = twin_state.get_cache(Stage.DYNAMICS)
    ac = twin_state.get_cache(Stage.ACCELERATION)
    applied = [dc.body_forces[i] + ac.constraint_body_forces[i] for i in range(matter.num_bodies)]
    transmitted = calc_transmitted_forces(matter.tree, pk, ac.body_accelerations,
                                          dc.gyroscopic_forces, applied)
    for name in scenario.FREE:
        assert np.max(np.abs(transmitted[scenario.bodies[name].index])) < TOL, name


def test_reaction_matches_constraint_force(scenario, twin_state):
    matter = scenario.system.matter
    reactions = matter.calc_mobilizer_reaction_forces(twin_state)
    for reduced, twin in scenario.TWINS.items():
        mismatch = reaction_constraint_mismatch(reactions[scenario.bodies[reduced].index],
                                                scenario.constraints[twin], twin_state)
        assert mismatch < TOL, reduced


def test_reduced_reactions_are_nonzero(scenario, twin_state):
    """Gravity and the applied torques load every Ball and Translation joint."""
    for reduced in scenario.TWINS:
        assert np.linalg.norm(scenario.bodies[reduced].get_mobilizer_reaction_force(twin_state)) > 1e-3
