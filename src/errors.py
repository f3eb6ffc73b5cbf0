"""Exception hierarchy for the multibody package."""

from typing import Optional


class MultibodyError(Exception):
    """Base class for all errors raised by the multibody package."""


class TopologyError(MultibodyError):
    """Malformed body tree or model modified after topology was realized."""


class StageError(MultibodyError):
    """A state cannot be realized, or a quantity was read before its stage."""


class ProjectionError(MultibodyError):
    """Constraint projection did not converge within its iteration bound.

    Attributes:
        residual: Best weighted constraint error achieved.
        iterations: Number of Newton iterations performed.
    """

    def __init__(self, message: str, residual: float, iterations: int) -> None:
        super().__init__(message)
        self.residual = residual
        self.iterations = iterations


class SingularConstraintError(MultibodyError):
    """Constraint Jacobian is rank deficient and cannot remove the error.

    Attributes:
        rank: Numerical rank of the weighted constraint Jacobian.
        residual: Weighted constraint error at the time of failure.
    """

    def __init__(self, message: str, rank: int, residual: Optional[float] = None) -> None:
        super().__init__(message)
        self.rank = rank
        self.residual = residual
