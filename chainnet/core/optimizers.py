"""Weight-update rules applied once per mini-batch.

An optimizer receives the merged, batch-averaged gradient of one weight (or
bias) vector and updates the vector in place. Per-vector state is keyed by the
``key`` the layer passes in, so one optimizer instance serves a whole network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Union

import numpy as np

from .types import Array


class Optimizer:
    """Base class; stateless rules only need :meth:`update`."""

    requires_hessian: bool = False

    def reset(self) -> None:
        """Forget all per-vector state."""

    def update(self, dW: Array, hessian: Array, W: Array, key: Hashable) -> None:
        raise NotImplementedError


@dataclass
class GradientDescent(Optimizer):
    """Plain SGD with optional L2 weight decay."""

    alpha: float = 0.01
    weight_decay: float = 0.0

    def update(self, dW, hessian, W, key):
        W -= self.alpha * (dW + self.weight_decay * W)


@dataclass
class Momentum(Optimizer):
    alpha: float = 0.01
    mu: float = 0.9
    weight_decay: float = 0.0
    _velocity: Dict[Hashable, Array] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._velocity.clear()

    def update(self, dW, hessian, W, key):
        v = self._velocity.setdefault(key, np.zeros_like(W))
        step = self.alpha * (dW + self.weight_decay * W)
        v[:] = self.mu * v - step
        W += v


@dataclass
class Adagrad(Optimizer):
    alpha: float = 0.01
    eps: float = 1e-8
    _g: Dict[Hashable, Array] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._g.clear()

    def update(self, dW, hessian, W, key):
        g = self._g.setdefault(key, np.zeros_like(W))
        g += np.square(dW)
        W -= self.alpha * dW / (np.sqrt(g) + self.eps)


@dataclass
class RMSProp(Optimizer):
    alpha: float = 0.0001
    mu: float = 0.99
    eps: float = 1e-8
    _g: Dict[Hashable, Array] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._g.clear()

    def update(self, dW, hessian, W, key):
        g = self._g.setdefault(key, np.zeros_like(W))
        g[:] = self.mu * g + (1.0 - self.mu) * np.square(dW)
        W -= self.alpha * dW / np.sqrt(g + self.eps)


@dataclass
class Adam(Optimizer):
    alpha: float = 0.001
    b1: float = 0.9
    b2: float = 0.999
    eps: float = 1e-8
    _m: Dict[Hashable, Array] = field(default_factory=dict, init=False, repr=False)
    _v: Dict[Hashable, Array] = field(default_factory=dict, init=False, repr=False)
    _t: Dict[Hashable, int] = field(default_factory=dict, init=False, repr=False)

    def reset(self) -> None:
        self._m.clear()
        self._v.clear()
        self._t.clear()

    def update(self, dW, hessian, W, key):
        m = self._m.setdefault(key, np.zeros_like(W))
        v = self._v.setdefault(key, np.zeros_like(W))
        t = self._t.get(key, 0) + 1
        self._t[key] = t
        m[:] = self.b1 * m + (1.0 - self.b1) * dW
        v[:] = self.b2 * v + (1.0 - self.b2) * np.square(dW)
        m_hat = m / (1.0 - self.b1**t)
        v_hat = v / (1.0 - self.b2**t)
        W -= self.alpha * m_hat / (np.sqrt(v_hat) + self.eps)


@dataclass
class LevenbergMarquardt(Optimizer):
    """Stochastic diagonal Levenberg-Marquardt.

    The step size of every weight is scaled by its estimated curvature
    ``hessian``, which the training loop refreshes once per epoch.
    """

    alpha: float = 0.00085
    mu: float = 0.02
    requires_hessian: bool = field(default=True, init=False)

    def update(self, dW, hessian, W, key):
        W -= (self.alpha / (hessian + self.mu)) * dW


_OPTIMIZERS: Dict[str, type] = {
    "sgd": GradientDescent,
    "gradient_descent": GradientDescent,
    "momentum": Momentum,
    "adagrad": Adagrad,
    "rmsprop": RMSProp,
    "adam": Adam,
    "levenberg_marquardt": LevenbergMarquardt,
    "lm": LevenbergMarquardt,
}


def build_optimizer(spec: Union[str, Optimizer], **params: float) -> Optimizer:
    if isinstance(spec, Optimizer):
        return spec
    key = str(spec).lower()
    if key not in _OPTIMIZERS:
        available = ", ".join(sorted(_OPTIMIZERS))
        raise KeyError(f"Unknown optimizer {spec!r}. Available optimizers: {available}")
    return _OPTIMIZERS[key](**params)


__all__ = [
    "Optimizer",
    "GradientDescent",
    "Momentum",
    "Adagrad",
    "RMSProp",
    "Adam",
    "LevenbergMarquardt",
    "build_optimizer",
]
