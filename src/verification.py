"""Verification of mobilizer reaction forces.

Builds a model in which every reduced-DOF mobilizer (Ball, Translation)
has a twin: a Free mobilizer plus an equivalent constraint. After driving
both into the same random configuration, the twins must move identically,
Free mobilizers must report zero reactions, and each reduced-DOF
mobilizer's reaction must equal the negated constraint force on its twin.

Usage:
    multibody_verify --seed 3 --tolerance 1e-10
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np
import tyro

from multibody.constraints import Ball as BallConstraint
from multibody.constraints import Constraint, ConstantOrientation
from multibody.forces import ConstantTorque, UniformGravity
from multibody.log import get_logger
from multibody.matter import MobilizedBody
from multibody.mobilizers import Ball, Free, Translation
from multibody.spatial import is_same_transform, rotate_spatial, transform_from_translation
from multibody.spatial_inertia import MassProperties
from multibody.stage import Stage
from multibody.state import State
from multibody.system import MultibodySystem

logger = get_logger(__name__)


@dataclass
class VerificationConfig:
    """Reaction-force verification settings.

    Attributes:
        seed: Seed of the random initial state.
        tolerance: Projection tolerance and comparison threshold.
        bond_length: Offset of each body origin from its mobilizer frame [m].
        mass: Mass of every body [kg]; the body's inertia is mass * I.
        gravity: Gravity vector in Ground [m/s²].
        torque: Constant torque on the outer body of each chain [N·m].
    """

    seed: int = 0
    tolerance: float = 1e-10
    bond_length: float = 0.5
    mass: float = 1.3
    gravity: Tuple[float, float, float] = (0.0, -9.8, 0.0)
    torque: Tuple[float, float, float] = (0.1, 0.1, 1.0)


@dataclass
class ReactionForceScenario:
    """Model with mobilizer/constraint twins.

    Attributes:
        system: The multibody system.
        bodies: Mobilized bodies by name: f1, f2 (Free chain), fb1, fb2 (Free
            bodies held by Ball constraints), b1, b2 (Ball chain), ft1, ft2
            (Free bodies held by ConstantOrientation constraints), t1, t2
            (Translation chain).
        constraints: Constraints by name of the body they hold.
    """

    system: MultibodySystem
    bodies: Dict[str, MobilizedBody] = field(default_factory=dict)
    constraints: Dict[str, Constraint] = field(default_factory=dict)

    # Reduced-DOF body name -> name of its Free twin
    TWINS = {'b1': 'fb1', 'b2': 'fb2', 't1': 'ft1', 't2': 'ft2'}
    FREE = ('f1', 'f2', 'fb1', 'fb2', 'ft1', 'ft2')


def build_reaction_force_scenario(config: VerificationConfig) -> ReactionForceScenario:
    """Create and finalize the twin-chain model."""
    system = MultibodySystem()
    matter = system.matter
    ground = matter.ground
    system.forces.add(UniformGravity(config.gravity))

    body = MassProperties(config.mass, (0.0, 0.0, 0.0), config.mass)
    L = config.bond_length
    X_BM_x = transform_from_translation([L, 0.0, 0.0])
    X_BM_y = transform_from_translation([0.0, L, 0.0])
    X_PF_z = transform_from_translation([0.0, 0.0, L])

    bodies = {}
    constraints = {}

    # Two free joints, which should produce no reaction forces.
    bodies['f1'] = matter.add_mobilized_body(ground, Free(), body, None, X_BM_x)
    bodies['f2'] = matter.add_mobilized_body(bodies['f1'], Free(), body, None, X_BM_x)

    # Two ball joints, and two free joints constrained to act like ball joints.
    bodies['fb1'] = matter.add_mobilized_body(ground, Free(), body, None, X_BM_x)
    bodies['fb2'] = matter.add_mobilized_body(bodies['fb1'], Free(), body, X_PF_z, X_BM_x)
    constraints['fb1'] = matter.add_constraint(
        BallConstraint(ground, [0.0, 0.0, 0.0], bodies['fb1'], [L, 0.0, 0.0]))
    constraints['fb2'] = matter.add_constraint(
        BallConstraint(bodies['fb1'], [0.0, 0.0, L], bodies['fb2'], [L, 0.0, 0.0]))
    bodies['b1'] = matter.add_mobilized_body(ground, Ball(), body, None, X_BM_x)
    bodies['b2'] = matter.add_mobilized_body(bodies['b1'], Ball(), body, X_PF_z, X_BM_x)
    system.forces.add(ConstantTorque(bodies['fb2'], config.torque))
    system.forces.add(ConstantTorque(bodies['b2'], config.torque))

    # Two translation joints, and two free joints constrained to act like translation joints.
    bodies['ft1'] = matter.add_mobilized_body(ground, Free(), body, None, X_BM_x)
    bodies['ft2'] = matter.add_mobilized_body(bodies['ft1'], Free(), body, None, X_BM_y)
    constraints['ft1'] = matter.add_constraint(
        ConstantOrientation(ground, np.eye(3), bodies['ft1'], np.eye(3)))
    constraints['ft2'] = matter.add_constraint(
        ConstantOrientation(bodies['ft1'], np.eye(3), bodies['ft2'], np.eye(3)))
    bodies['t1'] = matter.add_mobilized_body(ground, Translation(), body, None, X_BM_x)
    bodies['t2'] = matter.add_mobilized_body(bodies['t1'], Translation(), body, None, X_BM_y)
    system.forces.add(ConstantTorque(bodies['ft2'], config.torque))
    system.forces.add(ConstantTorque(bodies['t2'], config.torque))

    system.realize_topology()
    return ReactionForceScenario(system, bodies, constraints)


def prepare_twin_state(scenario: ReactionForceScenario, rng: np.random.Generator,
                       tolerance: float) -> State:
    """Random state in which every twin matches its reduced-DOF counterpart.

    Fills y with standard normal samples, fits each Free twin to the
    mobilizer transform and velocity of its counterpart, projects and
    realizes Acceleration.
    """
    system = scenario.system
    state = system.get_default_state()
    state.set_y(rng.standard_normal(state.ny))
    system.realize(state, Stage.VELOCITY)

    targets = {}
    for reduced, twin in scenario.TWINS.items():
        body = scenario.bodies[reduced]
        targets[twin] = (body.get_mobilizer_transform(state), body.get_mobilizer_velocity(state))
    for twin, (X_FM, V_FM) in targets.items():
        scenario.bodies[twin].set_q_to_fit_transform(state, X_FM)
    for twin, (X_FM, V_FM) in targets.items():
        scenario.bodies[twin].set_u_to_fit_velocity(state, V_FM)

    system.project(state, tolerance, np.ones(state.ny), np.ones(_num_constraint_equations(scenario)))
    system.realize(state, Stage.ACCELERATION)
    return state


def _num_constraint_equations(scenario: ReactionForceScenario) -> int:
    return sum(c.num_equations for c in scenario.constraints.values())


def reaction_constraint_mismatch(reaction: np.ndarray, constraint: Constraint, state: State) -> float:
    """Largest component of reaction + R_GA * (constraint force on the follower)."""
    body_forces, _ = constraint.calc_constraint_forces_from_multipliers(
        state, constraint.get_multipliers(state))
    R_GA = constraint.get_ancestor_body().get_body_rotation(state)
    return float(np.max(np.abs(reaction + rotate_spatial(R_GA, body_forces[1]))))


def run_reaction_force_verification(config: VerificationConfig) -> dict:
    """Run every check and print a report.

    Returns:
        Dictionary with per-check errors and an overall 'passed' flag.
    """
    scenario = build_reaction_force_scenario(config)
    rng = np.random.default_rng(config.seed)
    state = prepare_twin_state(scenario, rng, config.tolerance)
    matter = scenario.system.matter
    tol = config.tolerance
    results = {'twin_motion': {}, 'free_reaction': {}, 'reaction_vs_constraint': {}}

    print("=" * 60)
    print("Mobilizer Reaction Force Verification")
    print("=" * 60)

    print("\n1. Twin bodies move identically")
    print("-" * 40)
    for reduced, twin in scenario.TWINS.items():
        a, b = scenario.bodies[reduced], scenario.bodies[twin]
        same_pose = is_same_transform(a.get_body_transform(state), b.get_body_transform(state), tol)
        v_error = float(np.max(np.abs(a.get_body_velocity(state) - b.get_body_velocity(state))))
        ok = same_pose and v_error < tol
        results['twin_motion'][reduced] = {'same_transform': same_pose, 'velocity_error': v_error}
        status = "✓" if ok else "✗"
        print(f"  {reduced} vs {twin}: transform {'equal' if same_pose else 'differs'}, "
              f"velocity error={v_error:.2e} {status}")

    reactions = matter.calc_mobilizer_reaction_forces(state)

    print("\n2. Free mobilizers report zero reaction")
    print("-" * 40)
    for name in scenario.FREE:
        error = float(np.max(np.abs(reactions[scenario.bodies[name].index])))
        results['free_reaction'][name] = error
        status = "✓" if error < tol else "✗"
        print(f"  {name}: |reaction|={error:.2e} {status}")

    print("\n3. Reactions match constraint forces")
    print("-" * 40)
    for reduced, twin in scenario.TWINS.items():
        error = reaction_constraint_mismatch(reactions[scenario.bodies[reduced].index],
                                             scenario.constraints[twin], state)
        results['reaction_vs_constraint'][reduced] = error
        status = "✓" if error < tol else "✗"
        print(f"  {reduced} vs constraint on {twin}: error={error:.2e} {status}")

    passed = (all(r['same_transform'] and r['velocity_error'] < tol
                  for r in results['twin_motion'].values())
              and all(e < tol for e in results['free_reaction'].values())
              and all(e < tol for e in results['reaction_vs_constraint'].values()))
    results['passed'] = passed

    print("\n" + "=" * 60)
    print("Summary")
    print("=" * 60)
    print(f"  Max free reaction: {max(results['free_reaction'].values()):.2e}")
    print(f"  Max reaction mismatch: {max(results['reaction_vs_constraint'].values()):.2e}")
    print(f"  {'PASSED' if passed else 'FAILED'}")
    if not passed:
        logger.warning("Reaction force verification failed (seed=%d)", config.seed)
    return results


def main(config: VerificationConfig) -> bool:
    """Verify reaction forces.

    Args:
        config: Verification configuration.
    """
    return run_reaction_force_verification(config)['passed']


def entry_point() -> None:
    config = tyro.cli(VerificationConfig)
    raise SystemExit(0 if main(config) else 1)


if __name__ == "__main__":
    entry_point()
