"""
Finite-difference gradient checking.

Compares the gradients a backward pass produces against central
differences (f(x + eps) - f(x - eps)) / (2 eps), evaluating `f` on a fresh
Session every time so no state leaks between evaluations.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

import numpy as np

from .node import Node, Numeric
from .session import Session

logger = logging.getLogger(__name__)

# f(session, inputs) -> scalar output node
GraphFn = Callable[[Session, Sequence[Node]], Node]

STRATEGIES = ('linear', 'dfs')


class GradcheckError(AssertionError):
    """Analytic and numeric gradients disagree."""


def _evaluate(f: GraphFn, point: np.ndarray) -> float:
    with Session() as s:
        xs = [s.constant(v) for v in point]
        return float(f(s, xs).data)


def numeric_gradient(
    f: GraphFn,
    inputs: Sequence[Numeric],
    eps: float = 1e-3,
) -> np.ndarray:
    """Central-difference estimate of the gradient of f at `inputs`."""
    x = np.asarray(inputs, dtype=np.float64)
    grad = np.empty_like(x)
    for i in range(x.size):
        step = np.zeros_like(x)
        step[i] = eps
        grad[i] = (_evaluate(f, x + step) - _evaluate(f, x - step)) / (2 * eps)
    return grad


def analytic_gradient(
    f: GraphFn,
    inputs: Sequence[Numeric],
    strategy: str = 'linear',
) -> np.ndarray:
    """
    Gradient of f at `inputs` from one backward pass.

    Raises:
        ValueError: If strategy is not 'linear' or 'dfs'.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy {strategy!r}, expected one of {STRATEGIES}")
    with Session() as s:
        xs = [s.constant(v) for v in np.asarray(inputs, dtype=np.float64)]
        out = f(s, xs)
        if strategy == 'dfs':
            s.backward_dfs(out, retain_graph=True)
        else:
            s.backward(out, retain_graph=True)
        return np.array([x.grad for x in xs], dtype=np.float64)


def gradcheck(
    f: GraphFn,
    inputs: Sequence[Numeric],
    eps: float = 1e-3,
    atol: float = 1e-4,
    strategy: str = 'linear',
) -> bool:
    """
    Check analytic gradients of a scalar function against finite differences.

    Args:
        f: Builds the graph: called as f(session, input_nodes), returns the
            output node.
        inputs: Point to check at.
        eps: Finite-difference step.
        atol: Largest tolerated absolute difference per input.
        strategy: Backward pass to check, 'linear' or 'dfs'.

    Returns:
        True when every component agrees.

    Raises:
        GradcheckError: On the first disagreement.

    Example:
        >>> gradcheck(lambda s, xs: (xs[0] * xs[1]).tanh(), [0.3, -0.7])
        True
    """
    analytic = analytic_gradient(f, inputs, strategy)
    numeric = numeric_gradient(f, inputs, eps)
    diff = np.abs(analytic - numeric)
    logger.debug("gradcheck (%s): max abs diff %.3g", strategy, float(diff.max(initial=0.0)))

    bad = np.flatnonzero(~(diff <= atol))
    if bad.size:
        i = int(bad[0])
        raise GradcheckError(
            f"Gradient mismatch for input {i}: analytic={analytic[i]!r}, "
            f"numeric={numeric[i]!r} (diff={diff[i]:.3g}, atol={atol})"
        )
    return True
