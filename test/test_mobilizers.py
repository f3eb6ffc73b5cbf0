"""Tests for mobilizers module."""

import numpy as np
import pytest

from multibody.mobilizers import (
    MOBILIZER_KINDS,
    Ball,
    Cylinder,
    Free,
    Pin,
    Slider,
    Translation,
    Universal,
    make_mobilizer,
)
from multibody.spatial import is_same_transform, skew


ALL_KINDS = sorted(MOBILIZER_KINDS)


def random_coordinates(mobilizer, rng):
    """Random q within (-1, 1) with any quaternion normalized."""
    return mobilizer.normalize_q(rng.uniform(-1.0, 1.0, mobilizer.nq))


def transform_rate(mobilizer, q, qdot, h=1e-6):
    """Central-difference angular and linear velocity of X_FM(q(t)), in F."""
    X_plus = mobilizer.calc_transform(q + h * qdot)
    X_minus = mobilizer.calc_transform(q - h * qdot)
    X = mobilizer.calc_transform(q)
    R_dot = (X_plus[:3, :3] - X_minus[:3, :3]) / (2 * h)
    W = R_dot @ X[:3, :3].T
    w = 0.5 * np.array([W[2, 1] - W[1, 2], W[0, 2] - W[2, 0], W[1, 0] - W[0, 1]])
    v = (X_plus[:3, 3] - X_minus[:3, 3]) / (2 * h)
    return np.concatenate([w, v])


@pytest.mark.parametrize("kind", ALL_KINDS)
class TestMobilizerKinematics:
    """Kinematic maps of every mobilizer kind."""

    def test_sizes(self, kind):
        mobilizer = make_mobilizer(kind)
        q = mobilizer.default_q()
        assert q.shape == (mobilizer.nq,)
        assert mobilizer.calc_h_matrix(q).shape == (6, mobilizer.nu)
        assert mobilizer.calc_n_matrix(q).shape == (mobilizer.nq, mobilizer.nu)

    def test_default_is_identity(self, kind):
        mobilizer = make_mobilizer(kind)
        np.testing.assert_allclose(mobilizer.calc_transform(mobilizer.default_q()), np.eye(4), atol=1e-15)

    def test_velocity_matches_finite_difference(self, kind, rng):
        """V_FM = H u is the rate of change of X_FM along qdot = N u."""
        mobilizer = make_mobilizer(kind)
        q = random_coordinates(mobilizer, rng)
        u = rng.standard_normal(mobilizer.nu)
        qdot = mobilizer.calc_qdot(q, u)
        np.testing.assert_allclose(mobilizer.calc_velocity(q, u), transform_rate(mobilizer, q, qdot),
                                   atol=1e-7)

    def test_hdot_matches_finite_difference(self, kind, rng):
        mobilizer = make_mobilizer(kind)
        q = random_coordinates(mobilizer, rng)
        u = rng.standard_normal(mobilizer.nu)
        qdot = mobilizer.calc_qdot(q, u)
        h = 1e-6
        H_dot = (mobilizer.calc_h_matrix(q + h * qdot) - mobilizer.calc_h_matrix(q - h * qdot)) / (2 * h)
        np.testing.assert_allclose(mobilizer.calc_hdot_u(q, u), H_dot @ u, atol=1e-7)

    def test_qdotdot_matches_finite_difference(self, kind, rng):
        """qdotdot = N udot + d/dt(N) u."""
        mobilizer = make_mobilizer(kind)
        q = random_coordinates(mobilizer, rng)
        u = rng.standard_normal(mobilizer.nu)
        udot = rng.standard_normal(mobilizer.nu)
        qdot = mobilizer.calc_qdot(q, u)
        h = 1e-6
        fd = (mobilizer.calc_qdot(q + h * qdot, u + h * udot)
              - mobilizer.calc_qdot(q - h * qdot, u - h * udot)) / (2 * h)
        np.testing.assert_allclose(mobilizer.calc_qdotdot(q, u, udot), fd, atol=1e-7)

    def test_fit_transform_reproduces_transform(self, kind, rng):
        mobilizer = make_mobilizer(kind)
        X_FM = mobilizer.calc_transform(random_coordinates(mobilizer, rng))
        q_fit = mobilizer.q_to_fit_transform(mobilizer.default_q(), X_FM)
        assert is_same_transform(mobilizer.calc_transform(q_fit), X_FM, 1e-12)

    def test_fit_velocity_reproduces_velocity(self, kind, rng):
        mobilizer = make_mobilizer(kind)
        q = random_coordinates(mobilizer, rng)
        u = rng.standard_normal(mobilizer.nu)
        u_fit = mobilizer.u_to_fit_velocity(q, np.zeros(mobilizer.nu), mobilizer.calc_velocity(q, u))
        np.testing.assert_allclose(u_fit, u, atol=1e-12)


class TestFits:
    """Best-effort fits of joints that cannot reproduce every motion."""

    def test_pin_ignores_translation(self):
        """Components a fit cannot determine keep their current values."""
        pin = Pin()
        np.testing.assert_allclose(pin.q_to_fit_translation(np.array([0.7]), [1.0, 2.0, 3.0]), [0.7])

    def test_pin_fits_angle_about_z(self):
        pin = Pin()
        R = pin.calc_transform(np.array([2.5]))[:3, :3]
        assert pin.q_to_fit_rotation(np.zeros(1), R)[0] == pytest.approx(2.5)

    def test_cylinder_rotation_fit_keeps_distance(self):
        cylinder = Cylinder()
        R = cylinder.calc_transform(np.array([0.3, 0.0]))[:3, :3]
        np.testing.assert_allclose(cylinder.q_to_fit_rotation(np.array([0.0, 1.5]), R), [0.3, 1.5])

    def test_slider_linear_velocity(self):
        slider = Slider()
        np.testing.assert_allclose(slider.u_to_fit_linear_velocity(np.zeros(1), np.zeros(1),
                                                                   [0.4, 9.0, 9.0]), [0.4])

    def test_translation_keeps_speed_when_fitting_rotation(self):
        translation = Translation()
        u = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(translation.u_to_fit_angular_velocity(np.zeros(3), u, np.ones(3)), u)

    def test_universal_least_squares_angular_velocity(self, rng):
        """The component of w off the two joint axes is dropped."""
        universal = Universal()
        q = rng.uniform(-1.0, 1.0, 2)
        H = universal.calc_h_matrix(q)[:3]
        normal = np.cross(H[:, 0], H[:, 1])
        u = rng.standard_normal(2)
        u_fit = universal.u_to_fit_angular_velocity(q, np.zeros(2), H @ u + 0.3 * normal)
        np.testing.assert_allclose(u_fit, u, atol=1e-12)

    def test_ball_quaternion_sign(self, rng):
        """Fitted quaternions have a non-negative scalar part."""
        ball = Ball()
        q = ball.normalize_q(rng.standard_normal(4))
        if q[0] > 0:
            q = -q
        q_fit = ball.q_to_fit_rotation(ball.default_q(), ball.calc_transform(q)[:3, :3])
        assert q_fit[0] >= 0
        np.testing.assert_allclose(q_fit, -q, atol=1e-12)


class TestQuaternionMobilizers:
    """Ball and Free mobilizers."""

    def test_normalize_q(self, rng):
        free = Free()
        q = rng.standard_normal(7)
        q_n = free.normalize_q(q)
        assert np.linalg.norm(q_n[:4]) == pytest.approx(1.0)
        np.testing.assert_allclose(q_n[4:], q[4:])

    def test_ball_angular_velocity_in_f(self, rng):
        """u is w_FM expressed in F: Rdot R^T = [u]."""
        ball = Ball()
        q = ball.normalize_q(rng.standard_normal(4))
        u = rng.standard_normal(3)
        h = 1e-6
        qdot = ball.calc_qdot(q, u)
        R_dot = (ball.calc_transform(q + h * qdot)[:3, :3] - ball.calc_transform(q - h * qdot)[:3, :3]) / (2 * h)
        np.testing.assert_allclose(R_dot @ ball.calc_transform(q)[:3, :3].T, skew(u), atol=1e-7)


class TestMakeMobilizer:
    """Tests for creating mobilizers by kind name."""

    def test_case_insensitive(self):
        assert isinstance(make_mobilizer("ball"), Ball)
        assert isinstance(make_mobilizer("FREE"), Free)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            make_mobilizer("Screw")
