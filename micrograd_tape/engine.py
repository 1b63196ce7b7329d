"""
MicroGrad-Tape: Operators and Backward Passes
=============================================

Reverse-mode automatic differentiation over an arena tape.

Every operator computes its forward value, allocates the output Node on the
tape with its operands as predecessors and tags it with an OpKind. The
gradient rule for each OpKind lives in one dispatch table; a backward pass
seeds the root with grad 1 and invokes the rule of each node it walks, which
adds (output grad x local derivative) into the predecessors' grads.

There are two ways to walk the graph:

- `backward` sweeps tape indices from the root down to 0. Tape order is
  creation order, and a node is always created after its operands, so no
  sort is needed. It visits every node below the root, connected or not.
- `backward_dfs` runs an explicit-stack depth-first search from the root
  and only visits what the root actually depends on, at the price of
  pointer chasing.

Both give the same gradients. All arithmetic is float64 with numpy error
reporting switched off: a division by zero produces inf, not an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from operator import attrgetter
from typing import Callable, Dict, List, Sequence

import numpy as np

from .node import Node, Numeric, OpKind
from .tape import Tape

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackwardStats:
    """
    What the most recent backward pass walked.

    Attributes:
        strategy: 'linear' or 'dfs'.
        root_index: Tape index of the root (-1 for a parameter root).
        visited: Number of tape nodes whose gradient rule was invoked.
    """

    strategy: str
    root_index: int
    visited: int


# =============================================================================
# Helpers
# =============================================================================

def _tape_of(node: Node) -> Tape:
    """The tape new nodes derived from `node` go on."""
    if node.is_parameter:
        session = node.session
        if session is None:
            raise ValueError("Parameter is not attached to a session")
        return session.tape
    return node._owner


def _reserve(operands: Sequence[Node], count: int) -> Tape:
    """
    Validate the operands of a multi-node operator and make room for it.

    Everything that could make a later allocation fail is checked here,
    before the first node is created, so a refused operation leaves the
    tape untouched.
    """
    for node in operands:
        node.check_live()
    first = operands[0]
    for node in operands[1:]:
        if node.session is not first.session:
            raise ValueError("Cannot combine nodes from different sessions")
    tape = _tape_of(first)
    tape.reserve(count)
    return tape


def lift(ref: Node, other, nodes_after: int = 1) -> Node:
    """
    Return `other` as a Node, allocating numbers as constant leaves on the
    tape `ref` lives on (or its session's tape for a parameter).

    `nodes_after` is how many nodes the caller allocates once `other` is a
    Node; room for them is reserved together with the constant.
    """
    if isinstance(other, Node):
        return other
    return _reserve([ref], 1 + nodes_after).allocate(other)


# =============================================================================
# Operators
# =============================================================================

def _binary(a: Node, b: Node, data: np.float64, op: OpKind) -> Node:
    out = _tape_of(a).allocate(data, a, b)
    out.op = op
    return out


def _unary(a: Node, data: np.float64, op: OpKind) -> Node:
    out = _tape_of(a).allocate(data, a)
    out.op = op
    return out


@np.errstate(all='ignore')
def add(a: Node, b: Node) -> Node:
    """
    Addition: out = a + b

    Local derivatives:
        d(out)/d(a) = 1
        d(out)/d(b) = 1
    """
    return _binary(a, b, a.data + b.data, OpKind.ADD)


@np.errstate(all='ignore')
def subtract(a: Node, b: Node) -> Node:
    """
    Subtraction: out = a - b

    Local derivatives:
        d(out)/d(a) = 1
        d(out)/d(b) = -1
    """
    return _binary(a, b, a.data - b.data, OpKind.SUB)


@np.errstate(all='ignore')
def multiply(a: Node, b: Node) -> Node:
    """
    Multiplication: out = a * b

    Local derivatives:
        d(out)/d(a) = b
        d(out)/d(b) = a
    """
    return _binary(a, b, a.data * b.data, OpKind.MUL)


@np.errstate(all='ignore')
def true_divide(a: Node, b: Node) -> Node:
    """
    Direct division: out = a / b, as a single node.

    Local derivatives:
        d(out)/d(a) = 1 / b
        d(out)/d(b) = -a / b^2
    """
    return _binary(a, b, a.data / b.data, OpKind.DIV)


@np.errstate(all='ignore')
def power(a: Node, n: Numeric) -> Node:
    """
    Power with a constant exponent: out = a^n

    The exponent is recorded as a leaf on the tape (created before the
    output) so every binary node has two predecessors. It never receives a
    gradient.

    Local derivative:
        d(out)/d(a) = n * a^(n-1)

    Raises:
        TypeError: If n is a Node or not numeric.
    """
    if isinstance(n, Node):
        raise TypeError("Power exponent must be a number, not a Node")
    tape = _reserve([a], 2)
    exponent = tape.allocate(n)
    out = tape.allocate(a.data ** exponent.data, a, exponent)
    out.op = OpKind.POW
    return out


def divide(a: Node, b: Node) -> Node:
    """
    Division as a * b^(-1).

    Reuses the power and product rules; the reciprocal (and its exponent
    leaf) are ordinary tape nodes created before the product.
    """
    _reserve([a, b], 3)
    return multiply(a, power(b, -1))


@np.errstate(all='ignore')
def exp(a: Node) -> Node:
    """
    Exponential: out = e^a

    Local derivative:
        d(out)/d(a) = e^a (the output itself)
    """
    return _unary(a, np.exp(a.data), OpKind.EXP)


@np.errstate(all='ignore')
def tanh(a: Node) -> Node:
    """
    Hyperbolic tangent: out = (e^(2a) - 1) / (e^(2a) + 1)

    Local derivative:
        d(out)/d(a) = 1 - out^2
    """
    return _unary(a, np.tanh(a.data), OpKind.TANH)


def relu(a: Node) -> Node:
    """
    Rectified linear unit: out = max(a, 0)

    Local derivative:
        d(out)/d(a) = 1 if a > 0 else 0
    """
    x = a.data
    return _unary(a, x if x > 0 else np.float64(0.0), OpKind.RELU)


# =============================================================================
# Gradient rules
# =============================================================================
# Each rule reads node._grad and accumulates into its predecessors. Private
# fields are used directly: the backward pass checked the root is live, and
# everything reachable from a live node is live.

def _noop_rule(node: Node) -> None:
    pass


def _add_rule(node: Node) -> None:
    assert len(node.prev) == 2, "add needs two operands"
    left, right = node.prev
    left._grad += node._grad
    right._grad += node._grad


def _sub_rule(node: Node) -> None:
    assert len(node.prev) == 2, "subtract needs two operands"
    left, right = node.prev
    left._grad += node._grad
    right._grad -= node._grad


def _mul_rule(node: Node) -> None:
    assert len(node.prev) == 2, "multiply needs two operands"
    left, right = node.prev
    left._grad += right._data * node._grad
    right._grad += left._data * node._grad


def _div_rule(node: Node) -> None:
    assert len(node.prev) == 2, "divide needs two operands"
    left, right = node.prev
    x, y = left._data, right._data
    left._grad += (1.0 / y) * node._grad
    right._grad += (-x / (y * y)) * node._grad


def _pow_rule(node: Node) -> None:
    assert len(node.prev) == 2, "power needs a base and an exponent leaf"
    base, exponent = node.prev
    n = exponent._data
    base._grad += n * base._data ** (n - 1) * node._grad


def _exp_rule(node: Node) -> None:
    assert len(node.prev) == 1, "exp takes one operand"
    node.prev[0]._grad += node._data * node._grad


def _tanh_rule(node: Node) -> None:
    assert len(node.prev) == 1, "tanh takes one operand"
    node.prev[0]._grad += (1 - node._data * node._data) * node._grad


def _relu_rule(node: Node) -> None:
    assert len(node.prev) == 1, "relu takes one operand"
    x = node.prev[0]
    x._grad += (1.0 if x._data > 0 else 0.0) * node._grad


_GRADIENT_RULES: Dict[OpKind, Callable[[Node], None]] = {
    OpKind.NOOP: _noop_rule,
    OpKind.ADD: _add_rule,
    OpKind.SUB: _sub_rule,
    OpKind.MUL: _mul_rule,
    OpKind.DIV: _div_rule,
    OpKind.POW: _pow_rule,
    OpKind.EXP: _exp_rule,
    OpKind.TANH: _tanh_rule,
    OpKind.RELU: _relu_rule,
}


# =============================================================================
# Backpropagation
# =============================================================================

def _finish(tape: Tape, stats: BackwardStats, retain_graph: bool) -> None:
    tape.last_backward = stats
    logger.debug(
        "%s backward from index %d visited %d nodes (retain_graph=%s)",
        stats.strategy, stats.root_index, stats.visited, retain_graph,
    )
    if not retain_graph:
        tape.reset()


@np.errstate(all='ignore')
def backward(root: Node, retain_graph: bool = False) -> None:
    """
    Linear sweep: compute d(root)/d(node) for every node below the root.

    The algorithm:
    1. Set root.grad to 1
    2. Walk tape indices root.tape_idx, ..., 0 and run each node's rule

    Every index in that range is visited, including nodes that have no path
    to the root. Gradients accumulate; zero them first if the nodes were
    used by an earlier pass.

    Args:
        root: Output node to differentiate.
        retain_graph: Keep the tape alive afterwards. When False the tape is
            reset and every tape Node becomes stale.

    Example:
        >>> s = Session()
        >>> x = s.constant(2.0)
        >>> y = x ** 2 + 3 * x
        >>> backward(y, retain_graph=True)
        >>> print(x.grad)  # dy/dx = 2x + 3
        7.0
    """
    root.check_live()
    tape = _tape_of(root)
    root._grad = np.float64(1.0)

    rules = _GRADIENT_RULES
    for node in tape.reversed_from(root.tape_idx):
        rules[node.op](node)

    _finish(tape, BackwardStats('linear', root.tape_idx, root.tape_idx + 1), retain_graph)


def _post_order(root: Node, tape: Tape) -> List[Node]:
    """
    Tape nodes reachable from root, each after all of its predecessors.

    Uses an explicit stack so long chains do not hit the recursion limit.
    Leaves are recorded but never expanded; parameters are skipped entirely
    since they are not on the tape and have nothing to propagate.
    """
    if root.is_parameter:
        return []

    seen = bytearray(len(tape))
    order: List[Node] = []
    stack = [(root, False)]

    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        if seen[node.tape_idx]:
            continue
        seen[node.tape_idx] = 1

        stack.append((node, True))
        if node.op is not OpKind.NOOP:
            for parent in reversed(node.prev):
                if not parent.is_parameter and not seen[parent.tape_idx]:
                    stack.append((parent, False))

    return order


@np.errstate(all='ignore')
def backward_dfs(root: Node, retain_graph: bool = False) -> None:
    """
    Depth-first backward pass: only nodes the root depends on are visited.

    Builds a post-order of the root's reachable tape subgraph (shared
    predecessors are visited once), seeds root.grad = 1 and runs the rules
    in decreasing tape index. Any reverse topological order would do; this
    one adds a node's incoming contributions in the same order as the
    linear sweep, so both passes give bit-for-bit equal gradients.

    Args:
        root: Output node to differentiate.
        retain_graph: Keep the tape alive afterwards.
    """
    root.check_live()
    tape = _tape_of(root)
    order = _post_order(root, tape)
    root._grad = np.float64(1.0)

    order.sort(key=attrgetter('tape_idx'), reverse=True)

    rules = _GRADIENT_RULES
    for node in order:
        rules[node.op](node)

    _finish(tape, BackwardStats('dfs', root.tape_idx, len(order)), retain_graph)
