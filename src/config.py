"""Configuration dataclasses."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ProjectionSettings:
    """Settings for constraint projection.

    Attributes:
        max_iterations: Bound on Newton iterations of the position projection.
        rcond: Relative cutoff for small singular values in the least
            squares solves; None uses scipy's default.
        project_velocities: Also correct u after q has been projected.
    """

    max_iterations: int = 50
    rcond: Optional[float] = None
    project_velocities: bool = True


@dataclass
class IntegratorSettings:
    """Settings for fixed-step time integration.

    Attributes:
        step_size: Fixed step [s].
        projection_tolerance: Tolerance handed to projection after each step.
    """

    step_size: float = 1e-3
    projection_tolerance: float = 1e-10
