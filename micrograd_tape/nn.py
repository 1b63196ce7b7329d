"""
Neural Network Module
=====================

Feed-forward building blocks on top of the tape engine.

Weights and biases are Session parameters, so they survive the tape reset
that follows every default backward pass. Activations, inputs and losses
are ordinary tape nodes rebuilt on each forward pass.

This module provides:
- Module: Base class with parameters() and zero_grad()
- Neuron: Weighted sum plus bias, followed by an optional activation
- Layer: Neurons sharing the same inputs
- MLP: Stack of layers, tanh on hidden layers and a linear output
- mse_loss: Summed squared error
- SGD: Plain gradient descent over a session's parameter store
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

import numpy as np

from .node import Node, Numeric
from .session import Session

Input = Union[Node, Numeric]

ACTIVATIONS = ('tanh', 'relu')


class Module:
    """
    Base class for all neural network modules.

    Provides:
    - parameters(): collect all trainable Nodes
    - zero_grad(): reset their gradients before a backward pass
    """

    def parameters(self) -> List[Node]:
        """Return all trainable parameters in this module."""
        return []

    def zero_grad(self) -> None:
        """Reset gradients of this module's parameters to zero."""
        for p in self.parameters():
            p.grad = 0.0

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Neuron(Module):
    """
    A single artificial neuron.

    Computes: output = activation(sum(w_i * x_i) + b)

    The sum starts from a zero leaf on the tape and adds one product at a
    time, then the bias.

    Attributes:
        w: Weight parameters, initialised uniformly in [-0.5, 0.5]
        b: Bias parameter, initialised to 0
        activation: 'tanh', 'relu' or None for a linear neuron

    Example:
        >>> s = Session()
        >>> n = Neuron(s, 3, activation='tanh')
        >>> out = n([1.0, 2.0, 3.0])
    """

    def __init__(
        self,
        session: Session,
        nin: int,
        activation: Optional[str] = 'tanh'
    ) -> None:
        if activation is not None and activation not in ACTIVATIONS:
            raise ValueError(
                f"Unknown activation {activation!r}, expected one of {ACTIVATIONS} or None"
            )
        self.session = session
        self.w: List[Node] = [
            session.create_parameter(np.random.uniform(-0.5, 0.5), label=f'w{i}')
            for i in range(nin)
        ]
        self.b: Node = session.create_parameter(0.0, label='b')
        self.activation = activation

    def __call__(self, x: Sequence[Input]) -> Node:
        """
        Forward pass: compute neuron output.

        Raises:
            ValueError: If input length doesn't match weight count.
        """
        if len(x) != len(self.w):
            raise ValueError(
                f"Expected {len(self.w)} inputs, got {len(x)}"
            )

        act = self.session.constant(0.0)
        for wi, xi in zip(self.w, x):
            act = act + wi * xi
        act = act + self.b

        if self.activation == 'tanh':
            return act.tanh()
        if self.activation == 'relu':
            return act.relu()
        return act

    def parameters(self) -> List[Node]:
        """Return weights and bias."""
        return self.w + [self.b]

    def __repr__(self) -> str:
        return f"Neuron({len(self.w)}, {self.activation or 'linear'})"


class Layer(Module):
    """
    A fully connected layer of neurons.

    Example:
        >>> layer = Layer(s, 3, 4)  # 3 inputs, 4 outputs
        >>> out = layer([1.0, 2.0, 3.0])  # list of 4 Nodes
    """

    def __init__(
        self,
        session: Session,
        nin: int,
        nout: int,
        activation: Optional[str] = 'tanh'
    ) -> None:
        self.neurons: List[Neuron] = [
            Neuron(session, nin, activation=activation)
            for _ in range(nout)
        ]

    def __call__(self, x: Sequence[Input]) -> List[Node]:
        return [n(x) for n in self.neurons]

    def parameters(self) -> List[Node]:
        return [p for n in self.neurons for p in n.parameters()]

    def __repr__(self) -> str:
        return f"Layer({len(self.neurons[0].w)} -> {len(self.neurons)})"


class MLP(Module):
    """
    Multi-Layer Perceptron: a stack of fully connected layers.

    Hidden layers use the given activation; the output layer is linear.

    Example:
        >>> # 2 inputs -> 4 hidden -> 1 output
        >>> model = MLP(s, 2, [4, 1])
        >>> out = model([0.0, 1.0])  # single output Node
    """

    def __init__(
        self,
        session: Session,
        nin: int,
        nouts: List[int],
        activation: str = 'tanh'
    ) -> None:
        sizes = [nin] + nouts
        self.layers: List[Layer] = []

        for i in range(len(nouts)):
            is_output = (i == len(nouts) - 1)
            self.layers.append(
                Layer(
                    session,
                    sizes[i],
                    sizes[i + 1],
                    activation=None if is_output else activation
                )
            )

    def __call__(self, x: Sequence[Input]) -> Union[Node, List[Node]]:
        """
        Forward pass through all layers.

        Returns:
            The single output Node if the last layer has one neuron,
            otherwise the list of outputs.
        """
        for layer in self.layers:
            x = layer(x)

        return x[0] if len(x) == 1 else x

    def parameters(self) -> List[Node]:
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self) -> str:
        layer_strs = [str(layer) for layer in self.layers]
        return f"MLP([{', '.join(layer_strs)}])"


# =============================================================================
# Loss Functions
# =============================================================================

def mse_loss(predictions: Sequence[Node], targets: Sequence[Input]) -> Node:
    """
    Summed squared error: sum((pred_i - target_i)^2)

    Raises:
        ValueError: On empty or mismatched inputs.
    """
    if not predictions or len(predictions) != len(targets):
        raise ValueError(
            f"Need matching non-empty predictions and targets, "
            f"got {len(predictions)} and {len(targets)}"
        )
    total = None
    for pred, target in zip(predictions, targets):
        sq = (pred - target) ** 2
        total = sq if total is None else total + sq
    return total


# =============================================================================
# Optimizers
# =============================================================================

class SGD:
    """
    Gradient descent over every parameter of a session.

    Updates parameters: p = p - lr * p.grad
    """

    def __init__(self, session: Session, lr: float = 0.01) -> None:
        self.session = session
        self.lr = lr

    def step(self) -> None:
        """Apply one update. Call this after backward()."""
        self.session.apply_gradient_step(self.lr)

    def zero_grad(self) -> None:
        """Reset all parameter gradients to zero."""
        self.session.zero_parameter_gradients()
