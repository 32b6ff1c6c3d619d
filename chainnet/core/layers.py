"""Layer nodes and the ordered chain that owns them.

The chain is an arena: layers live in a Python list and neighbours are found
by index arithmetic. Every layer keeps one output buffer and one pair of
gradient accumulators per *task slot*; a worker thread only ever touches the
slot it was handed, so concurrent samples of a mini-batch never share
mutable state until the single-threaded merge in :meth:`Layer.update_weights`.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, TextIO, Union

import numpy as np

from .activations import Activation, Identity, get_activation
from .errors import DimensionMismatchError, NNError
from .initializers import Constant, Initializer, Xavier
from .optimizers import Optimizer
from .types import Array, Shape3D


def _as_shape(shape: Union[int, Shape3D]) -> Shape3D:
    return shape if isinstance(shape, Shape3D) else Shape3D(int(shape))


class Layer:
    """Base node: weights, per-task buffers and the backward hooks."""

    def __init__(
        self,
        in_shape: Union[int, Shape3D],
        out_shape: Union[int, Shape3D],
        weight_size: int,
        bias_size: int,
        activation: Union[str, Activation] = "identity",
    ) -> None:
        self.in_shape = _as_shape(in_shape)
        self.out_shape = _as_shape(out_shape)
        self.activation = get_activation(activation)
        self.weight = np.zeros(weight_size, dtype=np.float64)
        self.bias = np.zeros(bias_size, dtype=np.float64)
        self.weight_hessian = np.zeros_like(self.weight)
        self.bias_hessian = np.zeros_like(self.bias)
        self.weight_initializer: Initializer = Xavier()
        self.bias_initializer: Initializer = Constant(0.0)
        self.index = 0
        self._outputs: List[Array] = []
        self._dW: List[Array] = []
        self._db: List[Array] = []
        self.resize_tasks(1)

    # ------------------------------------------------------------------
    # Shape and slot bookkeeping

    @property
    def in_size(self) -> int:
        return self.in_shape.size

    @property
    def out_size(self) -> int:
        return self.out_shape.size

    @property
    def fan_in(self) -> int:
        return self.in_size

    @property
    def fan_out(self) -> int:
        return self.out_size

    @property
    def task_slots(self) -> int:
        return len(self._outputs)

    def resize_tasks(self, count: int) -> None:
        """Grow the per-task buffers to at least ``count`` slots."""

        while len(self._outputs) < count:
            self._outputs.append(np.zeros(self.out_size, dtype=np.float64))
            self._dW.append(np.zeros_like(self.weight))
            self._db.append(np.zeros_like(self.bias))

    def output(self, task_id: int = 0) -> Array:
        return self._outputs[task_id]

    def weight_gradient(self, task_id: int = 0) -> Array:
        return self._dW[task_id]

    def bias_gradient(self, task_id: int = 0) -> Array:
        return self._db[task_id]

    def layer_type(self) -> str:
        return type(self).__name__

    # ------------------------------------------------------------------
    # Propagation hooks

    def forward(self, x: Array, task_id: int = 0) -> Array:
        raise NotImplementedError

    def backward(self, delta: Array, task_id: int, prev: Optional["Layer"]) -> Array:
        """Accumulate this layer's gradients; return ``dE/da`` of ``prev``."""

        raise NotImplementedError

    def backward_2nd(self, delta2: Array, prev: Optional["Layer"]) -> Array:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Weights

    def init_weight(self, rng: np.random.Generator) -> None:
        self.weight_initializer(self.weight, self.fan_in, self.fan_out, rng)
        self.bias_initializer(self.bias, self.fan_in, self.fan_out, rng)
        self.clear_gradients()
        self.clear_hessian()

    def clear_gradients(self, task_count: Optional[int] = None) -> None:
        count = self.task_slots if task_count is None else min(task_count, self.task_slots)
        for i in range(count):
            self._dW[i].fill(0.0)
            self._db[i].fill(0.0)

    def clear_hessian(self) -> None:
        self.weight_hessian.fill(0.0)
        self.bias_hessian.fill(0.0)

    def divide_hessian(self, denominator: int) -> None:
        self.weight_hessian /= denominator
        self.bias_hessian /= denominator

    def update_weights(self, optimizer: Optimizer, task_count: int, batch_size: int) -> None:
        """Merge the first ``task_count`` slots and apply ``optimizer`` once."""

        if self.weight.size == 0:
            return
        dW = np.sum(self._dW[:task_count], axis=0) / batch_size
        optimizer.update(dW, self.weight_hessian, self.weight, (self.index, "weight"))
        if self.bias.size:
            db = np.sum(self._db[:task_count], axis=0) / batch_size
            optimizer.update(db, self.bias_hessian, self.bias, (self.index, "bias"))
        self.clear_gradients(task_count)

    def is_exploded(self) -> bool:
        return not (np.all(np.isfinite(self.weight)) and np.all(np.isfinite(self.bias)))

    def has_same_weights(self, other: "Layer", eps: float) -> bool:
        if self.weight.shape != other.weight.shape or self.bias.shape != other.bias.shape:
            return False
        return bool(
            np.all(np.abs(self.weight - other.weight) <= eps)
            and np.all(np.abs(self.bias - other.bias) <= eps)
        )

    def save(self, stream: TextIO) -> None:
        values = [repr(float(v)) for v in self.weight]
        values.extend(repr(float(v)) for v in self.bias)
        if values:
            stream.write(" ".join(values))
            stream.write("\n")

    def load(self, tokens: Iterator[str]) -> None:
        try:
            for i in range(self.weight.size):
                self.weight[i] = float(next(tokens))
            for i in range(self.bias.size):
                self.bias[i] = float(next(tokens))
        except StopIteration as exc:
            raise NNError(f"weight stream ended early while loading layer {self.index}") from exc

    def __repr__(self) -> str:
        return (
            f"{self.layer_type()}(in={self.in_size}, out={self.out_size}, "
            f"activation={self.activation!r})"
        )


class InputLayer(Layer):
    """Chain head: copies the input into its output slot."""

    def __init__(self, shape: Union[int, Shape3D] = 0) -> None:
        super().__init__(shape, shape, 0, 0, Identity())

    def reshape(self, shape: Shape3D) -> None:
        self.in_shape = self.out_shape = shape
        self._outputs = [np.zeros(shape.size, dtype=np.float64) for _ in self._outputs]

    def forward(self, x, task_id=0):
        out = self._outputs[task_id]
        out[:] = x
        return out

    def backward(self, delta, task_id, prev):
        return delta

    def backward_2nd(self, delta2, prev):
        return delta2


class FullyConnectedLayer(Layer):
    """Dense layer ``y = h(x @ W + b)`` with ``W`` stored row-major (in, out)."""

    def __init__(
        self,
        in_dim: int,
        out_dim: int,
        activation: Union[str, Activation] = "sigmoid",
        has_bias: bool = True,
    ) -> None:
        super().__init__(in_dim, out_dim, in_dim * out_dim, out_dim if has_bias else 0, activation)
        self.has_bias = has_bias

    @property
    def W(self) -> Array:
        return self.weight.reshape(self.in_size, self.out_size)

    def forward(self, x, task_id=0):
        a = x @ self.W
        if self.has_bias:
            a = a + self.bias
        out = self._outputs[task_id]
        out[:] = self.activation.f(a)
        return out

    def backward(self, delta, task_id, prev):
        prev_out = prev.output(task_id)
        self._dW[task_id] += np.outer(prev_out, delta).ravel()
        if self.has_bias:
            self._db[task_id] += delta
        return (self.W @ delta) * prev.activation.df(prev_out)

    def backward_2nd(self, delta2, prev):
        prev_out = prev.output(0)
        self.weight_hessian += np.outer(np.square(prev_out), delta2).ravel()
        if self.has_bias:
            self.bias_hessian += delta2
        return (np.square(self.W) @ delta2) * np.square(prev.activation.df(prev_out))


class LayerChain:
    """Ordered arena of layers; index 0 is always an :class:`InputLayer`."""

    def __init__(self) -> None:
        self._layers: List[Layer] = [InputLayer()]

    def add(self, layer: Layer) -> None:
        if len(self._layers) == 1:
            self.head.reshape(layer.in_shape)
        elif self.tail.out_size != layer.in_size:
            raise DimensionMismatchError(
                f"dimension mismatch! output size of layer {len(self._layers) - 1} "
                f"({self.tail.layer_type()}) is {self.tail.out_size}, "
                f"input size of new layer ({layer.layer_type()}) is {layer.in_size}"
            )
        layer.index = len(self._layers)
        layer.resize_tasks(self.head.task_slots)
        self._layers.append(layer)

    # ------------------------------------------------------------------
    # Traversal

    @property
    def head(self) -> Layer:
        return self._layers[0]

    @property
    def tail(self) -> Layer:
        return self._layers[-1]

    def next_of(self, index: int) -> Optional[Layer]:
        return self._layers[index + 1] if index + 1 < len(self._layers) else None

    def prev_of(self, index: int) -> Optional[Layer]:
        return self._layers[index - 1] if index > 0 else None

    def __getitem__(self, index: int) -> Layer:
        return self._layers[index]

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    @property
    def empty(self) -> bool:
        return len(self._layers) == 1

    @property
    def depth(self) -> int:
        return len(self._layers) - 1

    @property
    def in_dim(self) -> int:
        return self.head.in_size

    @property
    def out_dim(self) -> int:
        return self.tail.out_size

    @property
    def in_shape(self) -> Shape3D:
        return self.head.in_shape

    # ------------------------------------------------------------------
    # Whole-chain operations

    def ensure_tasks(self, count: int) -> None:
        for layer in self._layers:
            layer.resize_tasks(count)

    def forward(self, x: Array, task_id: int = 0) -> Array:
        for layer in self._layers:
            x = layer.forward(x, task_id)
        return x

    def backward(self, delta: Array, task_id: int = 0) -> None:
        for index in range(len(self._layers) - 1, -1, -1):
            delta = self._layers[index].backward(delta, task_id, self.prev_of(index))

    def backward_2nd(self, delta2: Array) -> None:
        for index in range(len(self._layers) - 1, -1, -1):
            delta2 = self._layers[index].backward_2nd(delta2, self.prev_of(index))

    def init_weight(self, rng: np.random.Generator) -> None:
        for layer in self._layers:
            layer.init_weight(rng)

    def update_weights(self, optimizer: Optimizer, task_count: int, batch_size: int) -> None:
        for layer in self._layers:
            layer.update_weights(optimizer, task_count, batch_size)

    def clear_gradients(self) -> None:
        for layer in self._layers:
            layer.clear_gradients()

    def clear_hessian(self) -> None:
        for layer in self._layers:
            layer.clear_hessian()

    def divide_hessian(self, denominator: int) -> None:
        for layer in self._layers:
            layer.divide_hessian(denominator)

    def is_exploded(self) -> bool:
        return any(layer.is_exploded() for layer in self._layers)


__all__ = ["Layer", "InputLayer", "FullyConnectedLayer", "LayerChain"]
