"""
Exceptions raised by the tape engine.

Only lifecycle violations are reported through exceptions. Numeric
degeneracy (division by zero, invalid powers) is left to IEEE arithmetic
and shows up as inf/nan in `data` and `grad`.
"""


class TapeError(RuntimeError):
    """Base class for tape and parameter-store lifecycle errors."""


class CapacityExceededError(TapeError):
    """
    Raised when an allocation would grow the tape past its capacity.

    Nothing is allocated when this is raised. The graph under construction
    is unusable; reset the tape before building another one.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(
            f"Tape capacity exceeded: cannot allocate more than {capacity} nodes"
        )


class StaleReferenceError(TapeError):
    """Raised when a Node is used after its tape was reset or its store released."""
