"""State container with a stage-tagged cache.

A State owns its generalized coordinates q, speeds u, time and the
per-constraint enabled flags, plus the derived quantities of every stage
it has been realized to. Mutating an input lowers the stage cursor and
drops the cache entries that depended on it.
"""

import copy
from typing import Any, Dict, List, Optional

import numpy as np

from multibody.errors import StageError
from multibody.stage import Stage


def _read_only(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class State:
    """Generalized coordinates/speeds and realization cache of one system.

    Attributes:
        stage: Highest stage realized so far.
    """

    def __init__(self, owner_id: int, q: np.ndarray, u: np.ndarray,
                 constraint_enabled: Optional[List[bool]] = None) -> None:
        self._owner_id = owner_id
        self._q = np.array(q, dtype=np.float64)
        self._u = np.array(u, dtype=np.float64)
        self._time = 0.0
        self._constraint_enabled = list(constraint_enabled or [])
        self._stage = Stage.TOPOLOGY
        self._cache: Dict[Stage, Any] = {}

    def copy(self) -> "State":
        """Independent deep copy, cache included."""
        return copy.deepcopy(self)

    # Sizes

    @property
    def nq(self) -> int:
        return self._q.size

    @property
    def nu(self) -> int:
        return self._u.size

    @property
    def ny(self) -> int:
        return self._q.size + self._u.size

    # Stage cursor

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def owner_id(self) -> int:
        return self._owner_id

    def invalidate(self, stage: Stage) -> None:
        """Mark `stage` and everything above it stale."""
        keep = Stage(max(stage - 1, Stage.EMPTY))
        if self._stage > keep:
            self._stage = keep
        for s in [s for s in self._cache if s > keep]:
            del self._cache[s]

    def advance_to(self, stage: Stage, cache_entry: Any = None) -> None:
        """Record that `stage` has been realized, storing its cache entry."""
        if stage != self._stage + 1:
            raise StageError(
                f"Cannot advance from {self._stage.name} to {stage.name}; stages are realized in order")
        self._cache[stage] = cache_entry
        self._stage = stage

    def get_cache(self, stage: Stage) -> Any:
        if self._stage < stage:
            raise StageError(f"State is realized only to {self._stage.name}, {stage.name} requested")
        return self._cache.get(stage)

    # Inputs

    @property
    def q(self) -> np.ndarray:
        return _read_only(self._q)

    @q.setter
    def q(self, value) -> None:
        self.set_q(value)

    @property
    def u(self) -> np.ndarray:
        return _read_only(self._u)

    @u.setter
    def u(self, value) -> None:
        self.set_u(value)

    @property
    def y(self) -> np.ndarray:
        """Copy of [q, u]."""
        return np.concatenate([self._q, self._u])

    @y.setter
    def y(self, value) -> None:
        self.set_y(value)

    @property
    def time(self) -> float:
        return self._time

    @time.setter
    def time(self, value: float) -> None:
        self._time = float(value)
        self.invalidate(Stage.TIME)

    def set_q(self, q) -> None:
        q = np.asarray(q, dtype=np.float64).flatten()
        if q.size != self._q.size:
            raise ValueError(f"Expected arrays of length {self._q.size}, got {q.size}")
        self._q[:] = q
        self.invalidate(Stage.POSITION)

    def set_u(self, u) -> None:
        u = np.asarray(u, dtype=np.float64).flatten()
        if u.size != self._u.size:
            raise ValueError(f"Expected arrays of length {self._u.size}, got {u.size}")
        self._u[:] = u
        self.invalidate(Stage.VELOCITY)

    def set_y(self, y) -> None:
        y = np.asarray(y, dtype=np.float64).flatten()
        if y.size != self.ny:
            raise ValueError(f"Expected arrays of length {self.ny}, got {y.size}")
        self.set_q(y[:self.nq])
        self.set_u(y[self.nq:])

    def upd_q(self) -> np.ndarray:
        """Writable q; invalidates Position and above."""
        self.invalidate(Stage.POSITION)
        return self._q

    def upd_u(self) -> np.ndarray:
        """Writable u; invalidates Velocity and above."""
        self.invalidate(Stage.VELOCITY)
        return self._u

    # Instance variables

    def is_constraint_enabled(self, index: int) -> bool:
        return self._constraint_enabled[index]

    def set_constraint_enabled(self, index: int, enabled: bool) -> None:
        if self._constraint_enabled[index] != bool(enabled):
            self._constraint_enabled[index] = bool(enabled)
            self.invalidate(Stage.INSTANCE)

    @property
    def constraint_enabled(self) -> List[bool]:
        return list(self._constraint_enabled)

    def __repr__(self) -> str:
        return f"State(nq={self.nq}, nu={self.nu}, t={self._time}, stage={self._stage.name})"
