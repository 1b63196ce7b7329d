"""
Session: the caller-owned engine context.

A Session bundles one Tape and one ParameterStore. Nothing is global, so
independent sessions can live side by side (one per thread, for instance);
a single session is not safe to share between threads.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import engine
from .engine import BackwardStats
from .node import Node, Numeric
from .tape import DEFAULT_TAPE_CAPACITY, ParameterStore, Tape

logger = logging.getLogger(__name__)


class Session:
    """
    One training run's worth of graph state.

    Example:
        >>> with Session(capacity=10_000) as s:
        ...     w = s.create_parameter(0.5, label='w')
        ...     x = s.constant(2.0)
        ...     loss = (w * x - 1.0) ** 2
        ...     s.zero_parameter_gradients()
        ...     s.backward(loss)           # tape is reset afterwards
        ...     s.apply_gradient_step(0.1)
    """

    def __init__(self, capacity: int = DEFAULT_TAPE_CAPACITY) -> None:
        self.tape = Tape(capacity, session=self)
        self.parameters = ParameterStore(session=self)

    def __repr__(self) -> str:
        return f"Session({self.tape!r}, {self.parameters!r})"

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # Node creation
    # =========================================================================

    def allocate(
        self,
        data: Numeric,
        prev0: Optional[Node] = None,
        prev1: Optional[Node] = None,
        label: str = '',
    ) -> Node:
        """Append a node to the tape (see Tape.allocate)."""
        return self.tape.allocate(data, prev0, prev1, label=label)

    def constant(self, data: Numeric, label: str = '') -> Node:
        """A leaf on the tape: an input or constant for the current graph."""
        return self.tape.allocate(data, label=label)

    def create_parameter(self, initial_data: Numeric, label: str = '') -> Node:
        """A trainable leaf that survives tape resets."""
        return self.parameters.create_parameter(initial_data, label=label)

    # =========================================================================
    # Operators
    # =========================================================================

    add = staticmethod(engine.add)
    subtract = staticmethod(engine.subtract)
    multiply = staticmethod(engine.multiply)
    divide = staticmethod(engine.divide)
    true_divide = staticmethod(engine.true_divide)
    power = staticmethod(engine.power)
    exp = staticmethod(engine.exp)
    tanh = staticmethod(engine.tanh)
    relu = staticmethod(engine.relu)

    # =========================================================================
    # Backpropagation
    # =========================================================================

    def backward(self, root: Node, retain_graph: bool = False) -> None:
        """Linear-sweep backward pass (see engine.backward)."""
        self._check_owned(root)
        engine.backward(root, retain_graph=retain_graph)

    def backward_dfs(self, root: Node, retain_graph: bool = False) -> None:
        """Depth-first backward pass (see engine.backward_dfs)."""
        self._check_owned(root)
        engine.backward_dfs(root, retain_graph=retain_graph)

    @property
    def last_backward(self) -> Optional[BackwardStats]:
        return self.tape.last_backward

    def _check_owned(self, node: Node) -> None:
        if node.session is not self:
            raise ValueError("Node belongs to a different session")

    # =========================================================================
    # Gradients and lifecycle
    # =========================================================================

    def zero_parameter_gradients(self) -> None:
        """Zero the grad of every parameter."""
        self.parameters.zero_gradients()

    def zero_all_gradients(self) -> None:
        """
        Zero parameter grads and the grads of every live tape node.

        Needed before re-running a backward pass over a graph kept with
        retain_graph=True.
        """
        self.parameters.zero_gradients()
        self.tape.zero_gradients()

    def apply_gradient_step(self, learning_rate: Numeric) -> None:
        """Gradient descent on every parameter: data -= learning_rate * grad."""
        self.parameters.apply_gradient_step(learning_rate)

    def reset(self) -> None:
        """Reset the tape. Parameters are untouched."""
        self.tape.reset()

    def release_all(self) -> None:
        """Release every parameter."""
        self.parameters.release_all()

    def close(self) -> None:
        """Tear the session down: reset the tape and release all parameters."""
        logger.debug("closing %r", self)
        self.tape.reset()
        self.parameters.release_all()
