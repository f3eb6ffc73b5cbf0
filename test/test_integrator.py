"""Tests for fixed-step time integration."""

import numpy as np
import pytest

from multibody.config import IntegratorSettings
from multibody.integrator import RungeKuttaIntegrator


def test_pendulum_conserves_energy(pendulum):
    system, link = pendulum
    state = system.get_default_state()
    link.set_q(state, [1.0])
    energy = system.calc_energy(state)
    integrator = RungeKuttaIntegrator(system, IntegratorSettings(step_size=1e-3))
    integrator.integrate(state, 1.0)
    assert state.time == pytest.approx(1.0)
    assert system.calc_energy(state) == pytest.approx(energy, rel=1e-9)
    # The pendulum has swung away from its release angle
    assert link.get_q(state)[0] != pytest.approx(1.0, abs=1e-2)


def test_double_pendulum_conserves_energy(double_pendulum):
    system, (link1, link2) = double_pendulum
    state = system.get_default_state()
    link1.set_q(state, [0.5])
    link2.set_u(state, [1.0])
    energy = system.calc_energy(state)
    RungeKuttaIntegrator(system, IntegratorSettings(step_size=1e-3)).integrate(state, 0.5)
    assert system.calc_energy(state) == pytest.approx(energy, rel=1e-7)


def test_stays_on_constraint_manifold(spherical_pendulum):
    system, bob, _ = spherical_pendulum
    matter = system.matter
    state = system.get_default_state()
    bob.set_u(state, [0.0, 0.5, 1.0, 0.3, 0.0, -0.2])
    system.project(state, 1e-12)
    energy = system.calc_energy(state)

    integrator = RungeKuttaIntegrator(system, IntegratorSettings(step_size=1e-3, projection_tolerance=1e-10))
    integrator.integrate(state, 0.2)
    assert np.max(np.abs(matter.get_position_errors(state))) <= 1e-10
    assert np.max(np.abs(matter.get_velocity_errors(state))) <= 1e-10
    assert system.calc_energy(state) == pytest.approx(energy, rel=1e-6)
    np.testing.assert_allclose(np.linalg.norm(bob.get_q(state)[:4]), 1.0, atol=1e-12)


def test_lands_on_final_time(pendulum):
    system, _ = pendulum
    state = system.get_default_state()
    integrator = RungeKuttaIntegrator(system, IntegratorSettings(step_size=1e-3))
    integrator.integrate(state, 0.0105)
    assert state.time == pytest.approx(0.0105, abs=1e-12)
    assert integrator.settings.step_size == 1e-3


def test_step_advances_time(pendulum):
    system, _ = pendulum
    state = system.get_default_state()
    integrator = RungeKuttaIntegrator(system, IntegratorSettings(step_size=2e-3))
    integrator.step(state)
    assert state.time == pytest.approx(2e-3)


def test_step_with_explicit_size(pendulum):
    system, _ = pendulum
    state = system.get_default_state()
    settings = IntegratorSettings(step_size=2e-3)
    integrator = RungeKuttaIntegrator(system, settings)
    integrator.step(state, 5e-4)
    assert state.time == pytest.approx(5e-4)
    assert settings.step_size == 2e-3
    with pytest.raises(ValueError):
        integrator.step(state, -1e-3)
    assert state.time == pytest.approx(5e-4)


@pytest.mark.parametrize("step_size", [0.0, -1e-3])
def test_invalid_step_size(pendulum, step_size):
    system, _ = pendulum
    with pytest.raises(ValueError):
        RungeKuttaIntegrator(system, IntegratorSettings(step_size=step_size))
