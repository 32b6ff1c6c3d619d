"""Activation functions for chainnet layers.

Every activation is expressed in terms of its *output* ``y``: derivatives are
evaluated from the values a layer already stores after the forward pass, so
no pre-activation buffer is needed during backpropagation.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Tuple, Type, Union

import numpy as np

from .types import Array


class ActivationKind(str, Enum):
    IDENTITY = "identity"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    RELU = "relu"
    LEAKY_RELU = "leaky_relu"
    SOFTMAX = "softmax"


class Activation:
    """Pointwise nonlinearity with its derivative and target range."""

    kind: ActivationKind

    def f(self, a: Array) -> Array:
        raise NotImplementedError

    def df(self, y: Array) -> Array:
        """Elementwise ``dy/da`` evaluated at output ``y``."""

        raise NotImplementedError

    def df_row(self, y: Array, i: int) -> Array:
        """Row ``i`` of the Jacobian ``dy/da`` over all output units."""

        row = np.zeros_like(y, dtype=np.float64)
        row[i] = self.df(y[i : i + 1])[0]
        return row

    def jacobian(self, y: Array) -> Array:
        return np.diag(self.df(y))

    def scale(self) -> Tuple[float, float]:
        """Target values used for the negative and positive class."""

        return 0.1, 0.9

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Identity(Activation):
    kind = ActivationKind.IDENTITY

    def f(self, a: Array) -> Array:
        return np.asarray(a, dtype=np.float64).copy()

    def df(self, y: Array) -> Array:
        return np.ones_like(y, dtype=np.float64)


class Sigmoid(Activation):
    kind = ActivationKind.SIGMOID

    def f(self, a: Array) -> Array:
        return 1.0 / (1.0 + np.exp(-a))

    def df(self, y: Array) -> Array:
        return y * (1.0 - y)


class Tanh(Activation):
    kind = ActivationKind.TANH

    def f(self, a: Array) -> Array:
        return np.tanh(a)

    def df(self, y: Array) -> Array:
        return 1.0 - np.square(y)

    def scale(self) -> Tuple[float, float]:
        return -0.8, 0.8


class ReLU(Activation):
    kind = ActivationKind.RELU

    def f(self, a: Array) -> Array:
        return np.maximum(a, 0.0)

    def df(self, y: Array) -> Array:
        return (y > 0.0).astype(np.float64)


class LeakyReLU(Activation):
    kind = ActivationKind.LEAKY_RELU

    def __init__(self, slope: float = 0.01) -> None:
        self.slope = slope

    def f(self, a: Array) -> Array:
        return np.where(a > 0.0, a, self.slope * a)

    def df(self, y: Array) -> Array:
        return np.where(y > 0.0, 1.0, self.slope)

    def __repr__(self) -> str:
        return f"LeakyReLU(slope={self.slope})"


class Softmax(Activation):
    """Softmax couples all units, so its Jacobian is dense."""

    kind = ActivationKind.SOFTMAX

    def f(self, a: Array) -> Array:
        shifted = a - np.max(a)
        e = np.exp(shifted)
        return e / np.sum(e)

    def df(self, y: Array) -> Array:
        return y * (1.0 - y)

    def df_row(self, y: Array, i: int) -> Array:
        row = -y[i] * y
        row[i] = y[i] * (1.0 - y[i])
        return row

    def jacobian(self, y: Array) -> Array:
        return np.diag(y) - np.outer(y, y)

    def scale(self) -> Tuple[float, float]:
        return 0.0, 1.0


_ACTIVATIONS: Dict[str, Type[Activation]] = {
    ActivationKind.IDENTITY.value: Identity,
    ActivationKind.SIGMOID.value: Sigmoid,
    ActivationKind.TANH.value: Tanh,
    ActivationKind.RELU.value: ReLU,
    ActivationKind.LEAKY_RELU.value: LeakyReLU,
    ActivationKind.SOFTMAX.value: Softmax,
}


def names() -> Iterable[str]:
    return sorted(_ACTIVATIONS)


def get_activation(spec: Union[str, ActivationKind, Activation]) -> Activation:
    """Return an activation instance from a name, kind or instance."""

    if isinstance(spec, Activation):
        return spec
    key = spec.value if isinstance(spec, ActivationKind) else str(spec).lower()
    if key not in _ACTIVATIONS:
        available = ", ".join(names())
        raise KeyError(f"Unknown activation {spec!r}. Available activations: {available}")
    return _ACTIVATIONS[key]()


__all__ = [
    "Activation",
    "ActivationKind",
    "Identity",
    "Sigmoid",
    "Tanh",
    "ReLU",
    "LeakyReLU",
    "Softmax",
    "get_activation",
    "names",
]
