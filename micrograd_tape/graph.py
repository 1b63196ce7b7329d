"""
Graph inspection: ordering, rendering and tape statistics.

These helpers only read the graph; they never touch gradients.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, List

import numpy as np

from .node import Node, op_symbol
from .tape import Tape


def topological_sort(root: Node) -> List[Node]:
    """
    Every node `root` depends on, parameters included, each listed after
    its predecessors (root is last).

    Args:
        root: The root node of the computation graph.

    Returns:
        List of Nodes in topological order.

    Example:
        >>> s = Session()
        >>> a, b = s.constant(1.0), s.constant(2.0)
        >>> d = (a + b) * a
        >>> topo = topological_sort(d)
        >>> # topo is [a, b, a+b, d]
    """
    root.check_live()
    topo: List[Node] = []
    visited = set()
    stack = [(root, False)]

    while stack:
        node, expanded = stack.pop()
        if expanded:
            topo.append(node)
            continue
        if node in visited:
            continue
        visited.add(node)
        stack.append((node, True))
        for parent in reversed(node.prev):
            if parent not in visited:
                stack.append((parent, False))

    return topo


def _name(node: Node) -> str:
    if node.label:
        return node.label
    return 'p' if node.is_parameter else f'v{node.tape_idx}'


def draw_graph(root: Node, format: str = 'text') -> str:
    """
    Render the graph rooted at `root`.

    Nodes without a label are named after their tape index (`v12`);
    unlabelled parameters show as `p`.

    Args:
        root: Root node of the graph to visualize.
        format: 'text' for one line per node, 'dot' for Graphviz DOT.

    Returns:
        String representation of the graph.

    Raises:
        ValueError: For an unknown format.
    """
    nodes = topological_sort(root)
    node_ids = {n: i for i, n in enumerate(nodes)}

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            nid = node_ids[node]
            lines.append(
                f'  n{nid} [label="{_name(node)}\\n'
                f'data={node.data:.4f}\\n'
                f'grad={node.grad:.4f}", shape=box];'
            )
            if node.prev:
                op_id = f'op{nid}'
                lines.append(f'  {op_id} [label="{op_symbol(node.op)}", shape=circle];')
                lines.append(f'  {op_id} -> n{nid};')
                for parent in node.prev:
                    lines.append(f'  n{node_ids[parent]} -> {op_id};')
        lines.append('}')
        return '\n'.join(lines)

    if format != 'text':
        raise ValueError(f"Unknown graph format: {format!r}")

    lines = ['Computation Graph:', '=' * 50]
    for node in reversed(nodes):
        op_str = ''
        if node.prev:
            args = ', '.join(_name(p) for p in node.prev)
            op_str = f' = {op_symbol(node.op)}({args})'
        lines.append(
            f'{_name(node):>10}: data={node.data:>10.4f}, '
            f'grad={node.grad:>10.4f}{op_str}'
        )
    return '\n'.join(lines)


def graph_stats(tape: Tape) -> Dict:
    """
    Summary statistics over every live node on the tape.

    Edges into parameters count toward fan-in but parameters get no fan-out
    entry (they are not on the tape).

    Returns:
        Dict with 'nodes', 'edges', 'max_fan_in', 'avg_fan_in',
        'max_fan_out', 'avg_fan_out' and 'operations' (op symbol -> count,
        leaves under 'leaf').
    """
    n_nodes = len(tape)
    if n_nodes == 0:
        return {
            'nodes': 0,
            'edges': 0,
            'max_fan_in': 0,
            'avg_fan_in': 0.0,
            'max_fan_out': 0,
            'avg_fan_out': 0.0,
            'operations': {},
        }

    fan_ins = np.zeros(n_nodes, dtype=np.int64)
    fan_outs = np.zeros(n_nodes, dtype=np.int64)
    ops: Counter = Counter()
    for node in tape:
        fan_ins[node.tape_idx] = len(node.prev)
        ops[op_symbol(node.op) or 'leaf'] += 1
        for parent in node.prev:
            if not parent.is_parameter:
                fan_outs[parent.tape_idx] += 1

    return {
        'nodes': n_nodes,
        'edges': int(fan_ins.sum()),
        'max_fan_in': int(fan_ins.max()),
        'avg_fan_in': float(fan_ins.mean()),
        'max_fan_out': int(fan_outs.max()),
        'avg_fan_out': float(fan_outs.mean()),
        'operations': dict(ops),
    }
