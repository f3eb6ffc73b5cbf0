"""Computation stages of a state, in dependency order."""

from enum import IntEnum


class Stage(IntEnum):
    """Ordered levels of the realization pipeline.

    Realizing a stage requires every lower stage to be realized first. Each
    state keeps a cursor at its highest realized stage.
    """

    EMPTY = 0
    TOPOLOGY = 1
    MODEL = 2
    INSTANCE = 3
    TIME = 4
    POSITION = 5
    VELOCITY = 6
    DYNAMICS = 7
    ACCELERATION = 8

    def next(self) -> "Stage":
        if self is Stage.ACCELERATION:
            raise ValueError("Acceleration is the highest stage")
        return Stage(self + 1)

    def prev(self) -> "Stage":
        if self is Stage.EMPTY:
            raise ValueError("Empty is the lowest stage")
        return Stage(self - 1)
