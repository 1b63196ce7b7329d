"""MicroGrad-Tape: a scalar autograd engine on an arena tape."""

from .errors import TapeError, CapacityExceededError, StaleReferenceError
from .node import Node, OpKind, PARAMETER_INDEX
from .tape import Tape, ParameterStore, DEFAULT_TAPE_CAPACITY
from .engine import (
    BackwardStats,
    add,
    subtract,
    multiply,
    divide,
    true_divide,
    power,
    exp,
    tanh,
    relu,
    backward,
    backward_dfs,
)
from .session import Session
from .graph import topological_sort, draw_graph, graph_stats
from .gradcheck import gradcheck, GradcheckError
from .nn import Module, Neuron, Layer, MLP, mse_loss, SGD

__all__ = [
    "TapeError",
    "CapacityExceededError",
    "StaleReferenceError",
    "Node",
    "OpKind",
    "PARAMETER_INDEX",
    "Tape",
    "ParameterStore",
    "DEFAULT_TAPE_CAPACITY",
    "BackwardStats",
    "add",
    "subtract",
    "multiply",
    "divide",
    "true_divide",
    "power",
    "exp",
    "tanh",
    "relu",
    "backward",
    "backward_dfs",
    "Session",
    "topological_sort",
    "draw_graph",
    "graph_stats",
    "gradcheck",
    "GradcheckError",
    "Module",
    "Neuron",
    "Layer",
    "MLP",
    "mse_loss",
    "SGD",
]
