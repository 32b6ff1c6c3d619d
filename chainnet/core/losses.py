"""Pointwise loss functions and their registry."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Union

import numpy as np

from .types import Array

_EPS = 1e-15


class LossKind(str, Enum):
    MSE = "mse"
    ABSOLUTE = "absolute"
    CROSS_ENTROPY = "cross_entropy"
    CROSS_ENTROPY_MULTICLASS = "cross_entropy_multiclass"


class Loss:
    """Loss ``E(y, t)`` evaluated per output coordinate."""

    kind: LossKind

    def f(self, y: Array, t: Array) -> Array:
        raise NotImplementedError

    def df(self, y: Array, t: Array) -> Array:
        """``dE/dy`` per coordinate."""

        raise NotImplementedError

    def value(self, y: Array, t: Array) -> float:
        y = np.asarray(y, dtype=np.float64)
        t = np.asarray(t, dtype=np.float64)
        if y.shape != t.shape:
            raise ValueError(f"{self.kind.value}: output shape {y.shape} != target shape {t.shape}")
        return float(np.sum(self.f(y, t)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MSE(Loss):
    kind = LossKind.MSE

    def f(self, y: Array, t: Array) -> Array:
        return 0.5 * np.square(y - t)

    def df(self, y: Array, t: Array) -> Array:
        return y - t


class Absolute(Loss):
    kind = LossKind.ABSOLUTE

    def f(self, y: Array, t: Array) -> Array:
        return np.abs(y - t)

    def df(self, y: Array, t: Array) -> Array:
        return np.sign(y - t)


class CrossEntropy(Loss):
    """Binary cross-entropy, one independent Bernoulli per output unit."""

    kind = LossKind.CROSS_ENTROPY

    def f(self, y: Array, t: Array) -> Array:
        y = np.clip(y, _EPS, 1.0 - _EPS)
        return -t * np.log(y) - (1.0 - t) * np.log(1.0 - y)

    def df(self, y: Array, t: Array) -> Array:
        y = np.clip(y, _EPS, 1.0 - _EPS)
        return (y - t) / (y * (1.0 - y))


class CrossEntropyMulticlass(Loss):
    kind = LossKind.CROSS_ENTROPY_MULTICLASS

    def f(self, y: Array, t: Array) -> Array:
        return -t * np.log(np.clip(y, _EPS, None))

    def df(self, y: Array, t: Array) -> Array:
        return -t / np.clip(y, _EPS, None)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, type] = {}

    def register(self, name: str, cls: type) -> None:
        self._registry[name] = cls

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def get(self, spec: Union[str, LossKind, Loss]) -> Loss:
        if isinstance(spec, Loss):
            return spec
        name = spec.value if isinstance(spec, LossKind) else str(spec).lower()
        if name not in self._registry:
            available = ", ".join(self.names())
            raise KeyError(f"Unknown loss {spec!r}. Available losses: {available}")
        return self._registry[name]()


REGISTRY = LossRegistry()
REGISTRY.register(LossKind.MSE.value, MSE)
REGISTRY.register(LossKind.ABSOLUTE.value, Absolute)
REGISTRY.register(LossKind.CROSS_ENTROPY.value, CrossEntropy)
REGISTRY.register(LossKind.CROSS_ENTROPY_MULTICLASS.value, CrossEntropyMulticlass)
# Short aliases used in presets
REGISTRY.register("ce", CrossEntropyMulticlass)
REGISTRY.register("bce", CrossEntropy)

__all__ = [
    "Loss",
    "LossKind",
    "LossRegistry",
    "REGISTRY",
    "MSE",
    "Absolute",
    "CrossEntropy",
    "CrossEntropyMulticlass",
]
