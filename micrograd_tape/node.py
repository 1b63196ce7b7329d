"""
Scalar graph nodes.

A Node is plain data: its value, its accumulated gradient, the kind of
operator that produced it and up to two predecessor Nodes. The gradient
rule is not stored on the Node; it is looked up from `op` by the engine.

Every Node is also a checked reference. It remembers the generation of the
tape (or parameter store) it was allocated from, and reading or writing
`data`/`grad` after that owner has been reset raises StaleReferenceError
instead of returning whatever now lives in the reused slot.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Tuple, Union

import numpy as np

from .errors import StaleReferenceError

if TYPE_CHECKING:
    from .session import Session

# Numeric inputs accepted wherever a Node is expected
Numeric = Union[int, float, np.integer, np.floating]

# tape_idx of every Parameter-Store node
PARAMETER_INDEX = -1


class OpKind(enum.IntEnum):
    """The closed set of operators a Node can come from."""

    NOOP = 0
    ADD = 1
    SUB = 2
    MUL = 3
    DIV = 4
    POW = 5
    EXP = 6
    TANH = 7
    RELU = 8


_OP_SYMBOLS = {
    OpKind.NOOP: '',
    OpKind.ADD: '+',
    OpKind.SUB: '-',
    OpKind.MUL: '*',
    OpKind.DIV: '/',
    OpKind.POW: '**',
    OpKind.EXP: 'exp',
    OpKind.TANH: 'tanh',
    OpKind.RELU: 'relu',
}


def op_symbol(op: OpKind) -> str:
    """Short display form of an operator kind ('' for leaves)."""
    return _OP_SYMBOLS[op]


def to_float64(value: Any) -> np.float64:
    """
    Validate a numeric input and convert it to double precision.

    Raises:
        TypeError: If value is not an int, float or numpy number.
    """
    if isinstance(value, bool) or not isinstance(
        value, (int, float, np.integer, np.floating)
    ):
        raise TypeError(
            f"Node data must be numeric, got {type(value).__name__}"
        )
    return np.float64(value)


class Node:
    """
    One scalar in the computation graph.

    Nodes are never constructed directly: use `Session.allocate` /
    `Session.constant` for tape nodes and `Session.create_parameter` for
    trainable ones, or combine existing Nodes with the operators.

    Attributes:
        op: Operator kind whose gradient rule applies to this node.
        prev: Predecessor Nodes (empty for leaves, one for unary ops,
            two for binary ops).
        tape_idx: Creation index on the tape, or PARAMETER_INDEX.
        label: Optional name for debugging and visualization.

    Example:
        >>> s = Session()
        >>> a, b = s.constant(2.0), s.constant(3.0)
        >>> z = a * b + 1
        >>> z.backward(retain_graph=True)
        >>> print(a.grad, b.grad)
        3.0 2.0
    """

    __slots__ = (
        '_data', '_grad', 'op', 'prev', 'tape_idx',
        '_owner', '_generation', 'label',
    )

    def __init__(
        self,
        data: np.float64,
        prev: Tuple[Node, ...],
        tape_idx: int,
        owner: Any,
        label: str = '',
    ) -> None:
        self._data = data
        self._grad = np.float64(0.0)
        self.op = OpKind.NOOP
        self.prev = prev
        self.tape_idx = tape_idx
        self._owner = owner
        self._generation = owner.generation
        self.label = label

    # =========================================================================
    # Checked access
    # =========================================================================

    @property
    def is_parameter(self) -> bool:
        return self.tape_idx == PARAMETER_INDEX

    @property
    def is_live(self) -> bool:
        """False once the owning tape was reset or the store released."""
        return self._generation == self._owner.generation

    @property
    def session(self) -> Session:
        return self._owner.session

    def check_live(self) -> None:
        """
        Raises:
            StaleReferenceError: If this reference outlived its owner's generation.
        """
        if self._generation != self._owner.generation:
            where = 'parameter' if self.is_parameter else f'tape node {self.tape_idx}'
            raise StaleReferenceError(
                f"Stale reference to {where} (generation {self._generation}, "
                f"owner is at generation {self._owner.generation})"
            )

    @property
    def data(self) -> np.float64:
        self.check_live()
        return self._data

    @data.setter
    def data(self, value: Numeric) -> None:
        self.check_live()
        self._data = to_float64(value)

    @property
    def grad(self) -> np.float64:
        self.check_live()
        return self._grad

    @grad.setter
    def grad(self, value: Numeric) -> None:
        self.check_live()
        self._grad = to_float64(value)

    def item(self) -> float:
        """Return the scalar value as a Python float."""
        return float(self.data)

    def __repr__(self) -> str:
        where = 'param' if self.is_parameter else f'idx={self.tape_idx}'
        if not self.is_live:
            return f"Node(<stale>, {where})"
        name = f"{self.label}=" if self.label else 'data='
        return f"Node({name}{self._data:.4f}, grad={self._grad:.4f}, {where})"

    # =========================================================================
    # Operator overloading
    # =========================================================================

    def __add__(self, other: Union[Node, Numeric]) -> Node:
        from .engine import add, lift
        return add(self, lift(self, other))

    def __radd__(self, other: Numeric) -> Node:
        from .engine import add, lift
        return add(lift(self, other), self)

    def __sub__(self, other: Union[Node, Numeric]) -> Node:
        from .engine import lift, subtract
        return subtract(self, lift(self, other))

    def __rsub__(self, other: Numeric) -> Node:
        from .engine import lift, subtract
        return subtract(lift(self, other), self)

    def __mul__(self, other: Union[Node, Numeric]) -> Node:
        from .engine import lift, multiply
        return multiply(self, lift(self, other))

    def __rmul__(self, other: Numeric) -> Node:
        from .engine import lift, multiply
        return multiply(lift(self, other), self)

    def __truediv__(self, other: Union[Node, Numeric]) -> Node:
        from .engine import divide, lift
        return divide(self, lift(self, other, nodes_after=3))

    def __rtruediv__(self, other: Numeric) -> Node:
        from .engine import divide, lift
        return divide(lift(self, other, nodes_after=3), self)

    def __neg__(self) -> Node:
        return self * -1

    def __pow__(self, n: Numeric) -> Node:
        from .engine import power
        if isinstance(n, Node):
            raise TypeError(
                "Power with Node exponent not supported; the exponent must be a number"
            )
        return power(self, n)

    def exp(self) -> Node:
        from .engine import exp
        return exp(self)

    def tanh(self) -> Node:
        from .engine import tanh
        return tanh(self)

    def relu(self) -> Node:
        from .engine import relu
        return relu(self)

    # =========================================================================
    # Backpropagation
    # =========================================================================

    def backward(self, retain_graph: bool = False) -> None:
        """Linear-sweep backward pass rooted here (see engine.backward)."""
        from .engine import backward
        backward(self, retain_graph=retain_graph)

    def backward_dfs(self, retain_graph: bool = False) -> None:
        """Depth-first backward pass rooted here (see engine.backward_dfs)."""
        from .engine import backward_dfs
        backward_dfs(self, retain_graph=retain_graph)
