"""Body tree: an arena of rigid bodies connected by mobilizers.

Bodies are referenced by integer index; body 0 is Ground. Each other body
is attached to exactly one parent through one mobilizer. Child lists,
traversal order and the q/u layout are derived once in `finalize()`.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from multibody.errors import TopologyError
from multibody.mobilizers import Mobilizer
from multibody.spatial import inverse_transform
from multibody.spatial_inertia import MassProperties

logger = logging.getLogger(__name__)

GROUND = 0


@dataclass
class BodyNode:
    """One body of the tree with its inboard mobilizer.

    Attributes:
        mass_properties: Mass, CoM and inertia about the body origin.
        parent: Parent body index, None for Ground and unattached bodies.
        mobilizer: Joint connecting this body to its parent.
        X_PF: (4, 4) inboard frame F fixed on the parent.
        X_BM: (4, 4) outboard frame M fixed on this body.
        X_MB: (4, 4) inverse of X_BM.
    """

    mass_properties: MassProperties
    parent: Optional[int] = None
    mobilizer: Optional[Mobilizer] = None
    X_PF: Optional[np.ndarray] = None
    X_BM: Optional[np.ndarray] = None
    X_MB: Optional[np.ndarray] = None


def _as_transform(X, name: str) -> np.ndarray:
    if X is None:
        return np.eye(4)
    X = np.asarray(X, dtype=np.float64)
    if X.shape != (4, 4):
        raise ValueError(f"Expected {name} as a (4, 4) transform, got shape {X.shape}")
    return X.copy()


class BodyTree:
    """Acyclic, Ground-rooted hierarchy of bodies.

    Attributes:
        bodies: Body nodes indexed by body index.
        children: Child indices per body (after finalize).
        order: Bodies in root-to-leaf order, Ground first (after finalize).
        q_start, u_start: Offsets of each body's coordinates in q and u.
    """

    def __init__(self) -> None:
        self.bodies: List[BodyNode] = [BodyNode(MassProperties(0.0))]
        self.children: List[List[int]] = []
        self.order: List[int] = []
        self.q_start: List[int] = []
        self.u_start: List[int] = []
        self.nq = 0
        self.nu = 0
        self._depth: List[int] = []
        self._finalized = False

    @property
    def num_bodies(self) -> int:
        return len(self.bodies)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_modifiable(self) -> None:
        if self._finalized:
            raise TopologyError("Body tree cannot be modified after topology has been realized")

    def _check_index(self, index: int, role: str) -> None:
        if not isinstance(index, (int, np.integer)) or not 0 <= index < len(self.bodies):
            raise TopologyError(f"{role} {index!r} does not refer to a body in this tree")

    def add_body(self, mass_properties: MassProperties) -> int:
        """Add an unattached body and return its index."""
        self._check_modifiable()
        self.bodies.append(BodyNode(mass_properties))
        return len(self.bodies) - 1

    def attach(self, child: int, parent: int, mobilizer: Mobilizer,
               X_PF=None, X_BM=None) -> None:
        """Connect `child` to `parent` through `mobilizer`.

        Args:
            child: Index of the body being mobilized.
            parent: Index of its parent body.
            mobilizer: Joint model.
            X_PF: Inboard frame on the parent, identity if None.
            X_BM: Outboard frame on the child, identity if None.
        """
        self._check_modifiable()
        self._check_index(child, "Child")
        self._check_index(parent, "Parent")
        if child == GROUND:
            raise TopologyError("Ground cannot be attached to a parent")
        if child == parent:
            raise TopologyError(f"Body {child} cannot be its own parent")
        node = self.bodies[child]
        if node.parent is not None:
            raise TopologyError(f"Body {child} is already attached to body {node.parent}")
        if not isinstance(mobilizer, Mobilizer):
            raise TypeError(f"Expected a Mobilizer, got {type(mobilizer).__name__}")
        X_PF = _as_transform(X_PF, "X_PF")
        X_BM = _as_transform(X_BM, "X_BM")
        node.parent = parent
        node.mobilizer = mobilizer
        node.X_PF = X_PF
        node.X_BM = X_BM
        node.X_MB = inverse_transform(X_BM)

    def finalize(self) -> None:
        """Validate the topology and derive traversal order and q/u layout."""
        if self._finalized:
            return
        n = len(self.bodies)
        for index in range(1, n):
            if self.bodies[index].parent is None:
                raise TopologyError(f"Body {index} was never attached to a parent")

        children = [[] for _ in range(n)]
        for index in range(1, n):
            children[self.bodies[index].parent].append(index)

        order = []
        depth = [0] * n
        stack = [GROUND]
        while stack:
            index = stack.pop()
            order.append(index)
            for child in reversed(children[index]):
                depth[child] = depth[index] + 1
                stack.append(child)
        if len(order) != n:
            unreachable = sorted(set(range(n)) - set(order))
            raise TopologyError(f"Bodies {unreachable} form a cycle not rooted at Ground")

        q_start = [0] * n
        u_start = [0] * n
        nq = nu = 0
        for index in order[1:]:
            mobilizer = self.bodies[index].mobilizer
            q_start[index] = nq
            u_start[index] = nu
            nq += mobilizer.nq
            nu += mobilizer.nu

        self.children = children
        self.order = order
        self._depth = depth
        self.q_start = q_start
        self.u_start = u_start
        self.nq = nq
        self.nu = nu
        self._finalized = True
        logger.debug("Finalized body tree with %d bodies, nq=%d, nu=%d", n, nq, nu)

    def q_slice(self, index: int) -> slice:
        mobilizer = self.bodies[index].mobilizer
        if mobilizer is None:
            return slice(0, 0)
        return slice(self.q_start[index], self.q_start[index] + mobilizer.nq)

    def u_slice(self, index: int) -> slice:
        mobilizer = self.bodies[index].mobilizer
        if mobilizer is None:
            return slice(0, 0)
        return slice(self.u_start[index], self.u_start[index] + mobilizer.nu)

    def parent(self, index: int) -> Optional[int]:
        return self.bodies[index].parent

    def depth(self, index: int) -> int:
        return self._depth[index]

    def ancestors(self, index: int) -> List[int]:
        """Path from `index` up to Ground, both included."""
        path = [index]
        while path[-1] != GROUND:
            path.append(self.bodies[path[-1]].parent)
        return path

    def common_ancestor(self, indices) -> int:
        """Deepest body that is an ancestor of (or equal to) every given body."""
        indices = list(indices)
        if not indices:
            return GROUND
        common = self.ancestors(indices[0])
        for index in indices[1:]:
            on_path = set(self.ancestors(index))
            common = [b for b in common if b in on_path]
        return common[0]

    def default_q(self) -> np.ndarray:
        q = np.zeros(self.nq)
        for index in self.order[1:]:
            q[self.q_slice(index)] = self.bodies[index].mobilizer.default_q()
        return q
