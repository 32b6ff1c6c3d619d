"""Weight and bias initialisers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union

import numpy as np

from .types import Array


class Initializer:
    """Fill ``values`` in place given the layer's fan-in and fan-out."""

    def __call__(
        self, values: Array, fan_in: int, fan_out: int, rng: np.random.Generator
    ) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Xavier(Initializer):
    scale: float = 6.0

    def __call__(self, values, fan_in, fan_out, rng):
        limit = np.sqrt(self.scale / max(1, fan_in + fan_out))
        values[:] = rng.uniform(-limit, limit, size=values.shape)


@dataclass(frozen=True)
class LeCun(Initializer):
    scale: float = 1.0

    def __call__(self, values, fan_in, fan_out, rng):
        limit = self.scale / np.sqrt(max(1, fan_in))
        values[:] = rng.uniform(-limit, limit, size=values.shape)


@dataclass(frozen=True)
class Constant(Initializer):
    value: float = 0.0

    def __call__(self, values, fan_in, fan_out, rng):
        values[:] = self.value


_INITIALIZERS: Dict[str, type] = {
    "xavier": Xavier,
    "lecun": LeCun,
    "constant": Constant,
}


def get_initializer(spec: Union[str, Initializer], **params: float) -> Initializer:
    if isinstance(spec, Initializer):
        return spec
    key = str(spec).lower()
    if key not in _INITIALIZERS:
        available = ", ".join(sorted(_INITIALIZERS))
        raise KeyError(f"Unknown initializer {spec!r}. Available initializers: {available}")
    return _INITIALIZERS[key](**params)


__all__ = ["Initializer", "Xavier", "LeCun", "Constant", "get_initializer"]
