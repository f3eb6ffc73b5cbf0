"""Multibody package for articulated rigid-body dynamics.

This package provides:
- Spatial algebra and spatial inertia utilities
- A body tree of mobilizers (Weld, Pin, Slider, Cylinder, Universal,
  Planar, Ball, Translation, Free)
- Staged, lazily realized states
- Constraints with Lagrange multipliers and projection
- Force elements
- Recursive Newton-Euler, composite-body and articulated-body algorithms
- Mobilizer reaction forces

Spatial vectors use the [ω, v] convention, expressed in Ground at the body
origin unless stated otherwise.
"""

from multibody.errors import (
    MultibodyError,
    ProjectionError,
    SingularConstraintError,
    StageError,
    TopologyError,
)
from multibody.spatial_inertia import (
    MassProperties,
    spatial_inertia_at_com,
    spatial_inertia_at_frame,
    transform_spatial_inertia,
)
from multibody.stage import Stage
from multibody.state import State
from multibody.mobilizers import (
    Ball,
    Cylinder,
    Free,
    Mobilizer,
    Pin,
    Planar,
    Slider,
    Translation,
    Universal,
    Weld,
)
from multibody import constraints
from multibody.forces import (
    ConstantForce,
    ConstantTorque,
    GlobalDamper,
    MobilityConstantForce,
    MobilityLinearDamper,
    MobilityLinearSpring,
    TwoPointLinearSpring,
    UniformGravity,
)
from multibody.config import IntegratorSettings, ProjectionSettings
from multibody.matter import MatterSubsystem, MobilizedBody
from multibody.system import MultibodySystem
from multibody.integrator import RungeKuttaIntegrator

__all__ = [
    # errors
    'MultibodyError',
    'ProjectionError',
    'SingularConstraintError',
    'StageError',
    'TopologyError',
    # spatial_inertia
    'MassProperties',
    'spatial_inertia_at_com',
    'spatial_inertia_at_frame',
    'transform_spatial_inertia',
    # stage, state
    'Stage',
    'State',
    # mobilizers
    'Ball',
    'Cylinder',
    'Free',
    'Mobilizer',
    'Pin',
    'Planar',
    'Slider',
    'Translation',
    'Universal',
    'Weld',
    # constraints (names overlap with mobilizers, use the module)
    'constraints',
    # forces
    'ConstantForce',
    'ConstantTorque',
    'GlobalDamper',
    'MobilityConstantForce',
    'MobilityLinearDamper',
    'MobilityLinearSpring',
    'TwoPointLinearSpring',
    'UniformGravity',
    # config
    'IntegratorSettings',
    'ProjectionSettings',
    # matter, system, integrator
    'MatterSubsystem',
    'MobilizedBody',
    'MultibodySystem',
    'RungeKuttaIntegrator',
]
