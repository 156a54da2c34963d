"""Control-flow signals returned by event handlers."""
from __future__ import annotations

from enum import Enum


class Signal(str, Enum):
    """
    What the loop should do after a handler returns.

    Handlers that return ``None`` are read as ``CONTINUE``.
    """

    CONTINUE = "continue"
    SKIP_BATCH = "skip_batch"     # abandon the rest of this epoch's batch loop
    SKIP_EPOCH = "skip_epoch"     # abandon this epoch and all remaining ones
    STOP = "stop"                 # abandon the whole fit call, silently

    @classmethod
    def coerce(cls, value) -> "Signal":
        if value is None:
            return cls.CONTINUE
        if isinstance(value, cls):
            return value
        raise TypeError(
            f"Handlers must return a Signal or None, got {type(value).__name__}: {value!r}"
        )
