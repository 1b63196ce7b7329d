"""
Node storage: the arena tape for transient nodes and the parameter store
for trainable ones.

The tape only ever appends, so a node's creation index is larger than the
index of every tape node it depends on. Iterating the tape backwards from a
root is therefore already a reverse topological order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator, List, Optional

import numpy as np

from .errors import CapacityExceededError
from .node import PARAMETER_INDEX, Node, Numeric, to_float64

if TYPE_CHECKING:
    from .engine import BackwardStats
    from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_TAPE_CAPACITY = 100_000


class Tape:
    """
    Fixed-capacity, append-only arena of transient Nodes.

    `reset()` is O(1): it moves the high-water mark back to zero and bumps
    the generation, which invalidates every Node handed out before. Slots
    past the mark are reused by later allocations and never read.

    Attributes:
        capacity: Maximum number of live nodes.
        head: High-water mark (number of live nodes).
        generation: Incremented by every reset.
        session: Session the tape belongs to, if any.
        last_backward: Stats of the most recent backward pass rooted here.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_TAPE_CAPACITY,
        session: Optional[Session] = None,
    ) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"Tape capacity must be a positive int, got {capacity!r}")
        self.capacity = capacity
        self.session = session
        self.head = 0
        self.generation = 0
        self.last_backward: Optional[BackwardStats] = None
        self._slots: List[Node] = []

    def __len__(self) -> int:
        return self.head

    def __getitem__(self, idx: int) -> Node:
        if not 0 <= idx < self.head:
            raise IndexError(f"tape index {idx} out of range [0, {self.head})")
        return self._slots[idx]

    def __iter__(self) -> Iterator[Node]:
        """Live nodes in creation order."""
        for i in range(self.head):
            yield self._slots[i]

    def __repr__(self) -> str:
        return (
            f"Tape(head={self.head}, capacity={self.capacity}, "
            f"generation={self.generation})"
        )

    def allocate(
        self,
        data: Numeric,
        prev0: Optional[Node] = None,
        prev1: Optional[Node] = None,
        label: str = '',
    ) -> Node:
        """
        Append a new node at the high-water mark.

        The node starts with grad 0 and the no-op gradient rule; operators
        set `op` on the node they get back.

        Args:
            data: Forward value.
            prev0: First predecessor, if any.
            prev1: Second predecessor (requires prev0).
            label: Optional debugging name.

        Returns:
            The new Node, whose tape_idx is the previous high-water mark.

        Raises:
            CapacityExceededError: If the tape is full. Nothing is allocated.
            StaleReferenceError: If a predecessor is from an earlier generation.
            ValueError: If a predecessor belongs to another session, or
                prev1 is given without prev0.
            TypeError: If data is not numeric.
        """
        self.reserve(1)

        value = to_float64(data)
        if prev0 is None:
            if prev1 is not None:
                raise ValueError("prev1 given without prev0")
            prev = ()
        elif prev1 is None:
            prev = (prev0,)
        else:
            prev = (prev0, prev1)

        for p in prev:
            p.check_live()
            if p.session is not self.session:
                raise ValueError("Cannot combine nodes from different sessions")

        node = Node(value, prev, self.head, self, label)
        if self.head < len(self._slots):
            self._slots[self.head] = node
        else:
            self._slots.append(node)
        self.head += 1
        return node

    def reserve(self, count: int) -> None:
        """
        Check that `count` more nodes fit on the tape.

        Operators that allocate several nodes call this first, so a full
        tape refuses the whole operation rather than keeping its first
        nodes.

        Raises:
            CapacityExceededError: If fewer than `count` slots are free.
        """
        if self.head + count > self.capacity:
            logger.error(
                "tape full: %d/%d nodes live, %d requested",
                self.head, self.capacity, count,
            )
            raise CapacityExceededError(self.capacity)

    def reversed_from(self, idx: int) -> Iterator[Node]:
        """Nodes at tape indices idx, idx-1, ..., 0."""
        slots = self._slots
        for i in range(idx, -1, -1):
            yield slots[i]

    def zero_gradients(self) -> None:
        """Zero the grad of every live node, indices [0, head)."""
        for i in range(self.head):
            self._slots[i]._grad = np.float64(0.0)

    def reset(self) -> None:
        """Drop every live node in O(1); all earlier Node references go stale."""
        logger.debug("tape reset: %d nodes dropped (generation %d)", self.head, self.generation)
        self.head = 0
        self.generation += 1


class ParameterStore:
    """
    Owner of trainable Nodes, independent of tape resets.

    Parameters are leaves: they feed operators but are never the output of
    one. Iteration order is creation order.
    """

    def __init__(self, session: Optional[Session] = None) -> None:
        self.session = session
        self.generation = 0
        self._params: List[Node] = []

    def __len__(self) -> int:
        return len(self._params)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._params)

    def __repr__(self) -> str:
        return f"ParameterStore(size={len(self._params)})"

    def create_parameter(self, initial_data: Numeric, label: str = '') -> Node:
        """Create and record a parameter with grad 0."""
        node = Node(to_float64(initial_data), (), PARAMETER_INDEX, self, label)
        self._params.append(node)
        return node

    def zero_gradients(self) -> None:
        for p in self._params:
            p._grad = np.float64(0.0)

    @np.errstate(all='ignore')
    def apply_gradient_step(self, learning_rate: Numeric) -> None:
        """
        Plain gradient descent on every parameter: data -= lr * grad.

        Args:
            learning_rate: Step size.
        """
        lr = to_float64(learning_rate)
        for p in self._params:
            p._data = p._data - lr * p._grad

    def release_all(self) -> None:
        """Forget every parameter; existing references go stale."""
        logger.debug("releasing %d parameters", len(self._params))
        self._params.clear()
        self.generation += 1
