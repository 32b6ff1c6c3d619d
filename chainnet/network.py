"""Feed-forward network: propagation engine, evaluation and gradient checks."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import (
    Callable,
    FrozenSet,
    List,
    Optional,
    Sequence,
    TextIO,
    Tuple,
    Union,
)

import numpy as np

from .core.activations import Activation, ActivationKind
from .core.errors import DimensionMismatchError, UnknownModeError
from .core.initializers import Initializer, get_initializer
from .core.layers import Layer, LayerChain
from .core.losses import REGISTRY as LOSS_REGISTRY
from .core.losses import Loss, LossKind
from .core.optimizers import GradientDescent, Optimizer
from .core.types import Array, GradCheckMode, Result, Shape3D, Target
from .training.trainer import DEFAULT_TASK_SIZE, HESSIAN_SAMPLE_CAP, Trainer

logger = logging.getLogger(__name__)

#: (activation, loss) pairs for which ``dE/da`` reduces to ``y - t``.
CANONICAL_LINKS: FrozenSet[Tuple[ActivationKind, LossKind]] = frozenset(
    {
        (ActivationKind.SIGMOID, LossKind.CROSS_ENTROPY),
        (ActivationKind.TANH, LossKind.CROSS_ENTROPY),
        (ActivationKind.IDENTITY, LossKind.MSE),
        (ActivationKind.SOFTMAX, LossKind.CROSS_ENTROPY_MULTICLASS),
    }
)

GRAD_CHECK_STEP = 1e-10
GRAD_CHECK_RANDOM_SAMPLES = 10


def is_pair_target(target: object) -> bool:
    """True for an ``(index, value)`` training signal.

    Only a 2-tuple whose first item is an integer qualifies; any other tuple
    is a dense target vector.
    """

    return (
        isinstance(target, tuple)
        and len(target) == 2
        and isinstance(target[0], (int, np.integer))
        and not isinstance(target[0], bool)
    )


class Network:
    """A chain of layers trained by backpropagation.

    The network owns its layers, its loss and its optimizer. Layers are
    appended tail-wise with :meth:`add`; the first layer's input shape
    becomes the network's input shape.
    """

    def __init__(
        self,
        loss: Union[str, Loss] = "mse",
        optimizer: Optional[Optimizer] = None,
        name: str = "",
        *,
        seed: int = 0,
    ) -> None:
        self.name = name
        self.loss = LOSS_REGISTRY.get(loss)
        self.optimizer = optimizer if optimizer is not None else GradientDescent()
        self.rng = np.random.default_rng(seed)
        self._layers = LayerChain()

    # ------------------------------------------------------------------
    # Structure

    def add(self, layer: Layer) -> "Network":
        self._layers.add(layer)
        return self

    @property
    def layers(self) -> LayerChain:
        return self._layers

    @property
    def in_dim(self) -> int:
        return self._layers.in_dim

    @property
    def out_dim(self) -> int:
        return self._layers.out_dim

    @property
    def in_shape(self) -> Shape3D:
        return self._layers.in_shape

    @property
    def depth(self) -> int:
        return self._layers.depth

    def __getitem__(self, index: int) -> Layer:
        """Return the ``index``-th layer, not counting the implicit input layer."""

        if not 0 <= index < self.depth:
            raise IndexError(f"layer index {index} out of range for depth {self.depth}")
        return self._layers[index + 1]

    def init_weight(self) -> None:
        self._layers.init_weight(self.rng)

    def weight_init(self, initializer: Union[str, Initializer], **params: float) -> "Network":
        init = get_initializer(initializer, **params)
        for layer in self._layers:
            layer.weight_initializer = init
        return self

    def bias_init(self, initializer: Union[str, Initializer], **params: float) -> "Network":
        init = get_initializer(initializer, **params)
        for layer in self._layers:
            layer.bias_initializer = init
        return self

    def describe(self) -> List[dict]:
        return [
            {
                "type": layer.layer_type(),
                "in": layer.in_size,
                "out": layer.out_size,
                "activation": layer.activation.kind.value,
            }
            for layer in list(self._layers)[1:]
        ]

    # ------------------------------------------------------------------
    # Prediction

    def predict(self, x: Sequence[float]) -> Array:
        return self.fprop(x).copy()

    def predict_max_value(self, x: Sequence[float]) -> float:
        return self.fprop_max(x)

    def predict_label(self, x: Sequence[float]) -> int:
        return self.fprop_max_index(x)

    def fprop(self, x: Sequence[float], task_id: int = 0) -> Array:
        """Run the chain forward; returns the tail's output buffer for ``task_id``."""

        x = np.asarray(x, dtype=np.float64).reshape(-1)
        if x.size != self.in_dim:
            first = self._layers[1] if not self._layers.empty else self._layers.head
            raise DimensionMismatchError(
                f"input dimension mismatch! dim(data)={x.size}, "
                f"dim(network input)={self.in_dim} (layer 0: {first.layer_type()})"
            )
        return self._layers.forward(x, task_id)

    def fprop_max(self, x: Sequence[float], task_id: int = 0) -> float:
        return float(np.max(self.fprop(x, task_id)))

    def fprop_max_index(self, x: Sequence[float], task_id: int = 0) -> int:
        return int(np.argmax(self.fprop(x, task_id)))

    # ------------------------------------------------------------------
    # Backpropagation

    def is_canonical_link(self, activation: Activation) -> bool:
        return (activation.kind, self.loss.kind) in CANONICAL_LINKS

    @property
    def target_value_min(self) -> float:
        return self._layers.tail.activation.scale()[0]

    @property
    def target_value_max(self) -> float:
        return self._layers.tail.activation.scale()[1]

    def label2vector(self, label: int) -> Array:
        self._check_label(label)
        target = np.full(self.out_dim, self.target_value_min, dtype=np.float64)
        target[label] = self.target_value_max
        return target

    def _expand_target(self, output: Array, target: Target) -> Array:
        """Dense target vector for any training signal against ``output``.

        A pair keeps every other coordinate at the current output, so only
        the named unit contributes to the loss.
        """

        if isinstance(target, (int, np.integer)):
            return self.label2vector(int(target))
        if is_pair_target(target):
            index = int(target[0])
            self._check_label(index)
            t = np.array(output, dtype=np.float64)
            t[index] = float(target[1])
            return t
        return self._check_target_vector(target)

    def bprop(self, output: Array, target: Target, task_id: int = 0) -> None:
        """Backpropagate the loss of ``output`` against ``target`` into ``task_id``."""

        if isinstance(target, (int, np.integer)):
            self._bprop_vector(output, self.label2vector(int(target)), task_id)
        elif is_pair_target(target):
            self._bprop_pair(output, target, task_id)
        else:
            self._bprop_vector(output, self._check_target_vector(target), task_id)

    def _delta(self, output: Array, target: Array) -> Array:
        h = self._layers.tail.activation
        if self.is_canonical_link(h):
            return output - target
        # delta = dE/da = (dE/dy) . (dy/da), row by row of the Jacobian
        dE_dy = self.loss.df(output, target)
        delta = np.empty(self.out_dim, dtype=np.float64)
        for i in range(self.out_dim):
            delta[i] = np.dot(dE_dy, h.df_row(output, i))
        return delta

    def _bprop_vector(self, output: Array, target: Array, task_id: int) -> None:
        self._layers.backward(self._delta(output, target), task_id)

    def _bprop_pair(self, output: Array, target: Tuple[int, float], task_id: int) -> None:
        index, value = int(target[0]), float(target[1])
        self._check_label(index)
        if self.is_canonical_link(self._layers.tail.activation):
            delta = np.zeros(self.out_dim, dtype=np.float64)
            delta[index] = output[index] - value
        else:
            t = self._expand_target(output, (index, value))
            delta = self._delta(output, t)
        self._layers.backward(delta, task_id)

    def bprop_2nd(self, output: Array) -> None:
        """Accumulate a diagonal Hessian estimate for curvature-aware optimizers."""

        h = self._layers.tail.activation
        df = h.df(output)
        if self.is_canonical_link(h):
            delta2 = self.target_value_max * df
        else:
            # Approximation: squares dy/da rather than using the exact diagonal.
            delta2 = self.target_value_max * df * df
        self._layers.backward_2nd(delta2)

    def calc_hessian(
        self,
        data_size: int,
        input_fn: Callable[[int], Sequence[float]],
        sample_cap: int = HESSIAN_SAMPLE_CAP,
    ) -> int:
        size = min(data_size, sample_cap)
        self._layers.clear_hessian()
        for i in range(size):
            self.bprop_2nd(self.fprop(input_fn(i)))
        if size:
            self._layers.divide_hessian(size)
        logger.debug("Estimated Hessian diagonal from %d samples", size)
        return size

    # ------------------------------------------------------------------
    # Training

    def train(
        self,
        data_size: int,
        input_fn: Callable[[int], Sequence[float]],
        output_fn: Callable[[int, int], Target],
        batch_size: int = 1,
        epochs: int = 1,
        on_batch: Optional[Callable[[], None]] = None,
        on_epoch: Optional[Callable[[], None]] = None,
        reset_weights: bool = True,
        thread_count: int = DEFAULT_TASK_SIZE,
        **trainer_options,
    ) -> bool:
        """Train from index-driven generators; see :class:`Trainer`.

        ``output_fn`` receives the sample index and the task slot id of the
        worker evaluating it.
        """

        trainer = Trainer(self, **trainer_options)
        return trainer.train(
            data_size,
            input_fn,
            output_fn,
            batch_size=batch_size,
            epochs=epochs,
            on_batch=on_batch,
            on_epoch=on_epoch,
            reset_weights=reset_weights,
            thread_count=thread_count,
        )

    def fit(
        self,
        inputs: Sequence[Sequence[float]],
        targets: Sequence[Target],
        batch_size: int = 1,
        epochs: int = 1,
        on_batch: Optional[Callable[[], None]] = None,
        on_epoch: Optional[Callable[[], None]] = None,
        reset_weights: bool = True,
        thread_count: int = DEFAULT_TASK_SIZE,
        **trainer_options,
    ) -> bool:
        """Train from parallel arrays of inputs and training signals."""

        self.check_training_data(inputs, targets)
        data = [np.asarray(x, dtype=np.float64) for x in inputs]
        return self.train(
            len(data),
            lambda i: data[i],
            lambda i, task_id: targets[i],
            batch_size=batch_size,
            epochs=epochs,
            on_batch=on_batch,
            on_epoch=on_epoch,
            reset_weights=reset_weights,
            thread_count=thread_count,
            **trainer_options,
        )

    # ------------------------------------------------------------------
    # Evaluation

    def test(
        self,
        inputs: Sequence[Sequence[float]],
        labels: Optional[Sequence[int]] = None,
        *,
        thread_count: int = DEFAULT_TASK_SIZE,
    ) -> Union[Result, List[Array]]:
        """Confusion result when ``labels`` is given, raw predictions otherwise."""

        if labels is None:
            return self._predict_all(inputs, thread_count)
        if len(inputs) != len(labels):
            raise DimensionMismatchError(
                f"number of inputs ({len(inputs)}) must equal number of labels ({len(labels)})"
            )
        result = Result()
        for x, actual in zip(inputs, labels):
            result.record(self.fprop_max_index(x), int(actual))
        return result

    def _predict_all(self, inputs: Sequence[Sequence[float]], thread_count: int) -> List[Array]:
        n = len(inputs)
        outputs: List[Optional[Array]] = [None] * n
        if n == 0:
            return []
        tasks = max(1, min(n, thread_count))
        per_task = math.ceil(n / tasks)
        self._layers.ensure_tasks(tasks)

        def work(task_id: int) -> None:
            start = task_id * per_task
            for i in range(start, min(n, start + per_task)):
                outputs[i] = self.fprop(inputs[i], task_id).copy()

        if tasks == 1:
            work(0)
        else:
            with ThreadPoolExecutor(max_workers=tasks) as pool:
                list(pool.map(work, range(tasks)))
        return outputs  # type: ignore[return-value]

    def get_loss(self, inputs: Sequence[Sequence[float]], targets: Sequence[Target]) -> float:
        """Total loss over a dataset; labels and pairs are expanded as in :meth:`bprop`."""

        terms = []
        for x, t in zip(inputs, targets):
            output = self.fprop(x)
            terms.append(self.loss.value(output, self._expand_target(output, t)))
        return float(sum(terms))

    # ------------------------------------------------------------------
    # Gradient checking

    def gradient_check(
        self,
        inputs: Sequence[Sequence[float]],
        labels: Sequence[int],
        sample_count: int,
        epsilon: float,
        mode: Union[GradCheckMode, str] = GradCheckMode.ALL,
    ) -> bool:
        """Compare backprop gradients against central finite differences.

        Returns ``False`` at the first coordinate whose analytic and numeric
        derivatives differ by more than ``epsilon``. Every coordinate costs
        three full passes over ``sample_count`` examples.
        """

        try:
            mode = GradCheckMode(mode)
        except ValueError:
            raise UnknownModeError(f"unknown grad-check type: {mode!r}") from None
        if self._layers.empty:
            raise DimensionMismatchError("cannot check gradients of an empty network")

        xs = [np.asarray(inputs[i], dtype=np.float64) for i in range(sample_count)]
        ts = [self.label2vector(int(labels[i])) for i in range(sample_count)]

        for layer in list(self._layers)[1:]:
            w, b = layer.weight, layer.bias
            dw, db = layer.weight_gradient(0), layer.bias_gradient(0)
            if w.size == 0:
                continue
            if mode is GradCheckMode.ALL:
                w_indices: Sequence[int] = range(w.size)
                b_indices: Sequence[int] = range(b.size)
            else:
                w_indices = self.rng.integers(0, w.size, size=GRAD_CHECK_RANDOM_SAMPLES)
                b_indices = (
                    self.rng.integers(0, b.size, size=GRAD_CHECK_RANDOM_SAMPLES)
                    if b.size
                    else []
                )
            for i in w_indices:
                if self._calc_delta(xs, ts, w, dw, int(i)) > epsilon:
                    return False
            for i in b_indices:
                if self._calc_delta(xs, ts, b, db, int(i)) > epsilon:
                    return False
        return True

    def _calc_delta(
        self, xs: List[Array], ts: List[Array], w: Array, dw: Array, index: int
    ) -> float:
        self._layers.clear_gradients()
        prev = w[index]

        w[index] = prev + GRAD_CHECK_STEP
        f_plus = sum(self.loss.value(self.fprop(x), t) for x, t in zip(xs, ts))
        w[index] = prev - GRAD_CHECK_STEP
        f_minus = sum(self.loss.value(self.fprop(x), t) for x, t in zip(xs, ts))
        w[index] = prev
        numeric = (f_plus - f_minus) / (2.0 * GRAD_CHECK_STEP)

        for x, t in zip(xs, ts):
            self.bprop(self.fprop(x), t)
        analytic = dw[index]
        self._layers.clear_gradients()
        return abs(analytic - numeric)

    # ------------------------------------------------------------------
    # Validation

    def _check_label(self, label: int) -> None:
        if not 0 <= label < self.out_dim:
            message = (
                f"output dimension mismatch! label={label}, dim(network output)={self.out_dim}. "
                "In classification tasks, dim(network output) must be greater than max class id."
            )
            if self.out_dim == 1:
                message += " (for regression, use target vectors instead of labels)"
            raise DimensionMismatchError(message)

    def _check_target_vector(self, target: Sequence[float]) -> Array:
        t = np.asarray(target, dtype=np.float64).reshape(-1)
        if t.size != self.out_dim:
            raise DimensionMismatchError(
                f"output dimension mismatch! dim(target)={t.size}, dim(network output)={self.out_dim}"
            )
        return t

    def check_training_data(
        self, inputs: Sequence[Sequence[float]], targets: Sequence[Target]
    ) -> None:
        if len(inputs) != len(targets):
            raise DimensionMismatchError(
                f"number of training data ({len(inputs)}) must be equal to "
                f"number of training signals ({len(targets)})"
            )
        for i, (x, t) in enumerate(zip(inputs, targets)):
            dim = np.asarray(x).size
            if dim != self.in_dim:
                raise DimensionMismatchError(
                    f"input dimension mismatch! dim(data[{i}])={dim}, dim(network input)={self.in_dim}"
                )
            try:
                if isinstance(t, (int, np.integer)):
                    self._check_label(int(t))
                elif is_pair_target(t):
                    self._check_label(int(t[0]))
                else:
                    self._check_target_vector(t)
            except DimensionMismatchError as exc:
                raise DimensionMismatchError(f"training signal {i}: {exc}") from None

    # ------------------------------------------------------------------
    # Persistence

    def has_same_weights(self, other: "Network", eps: float) -> bool:
        if len(self._layers) != len(other._layers):
            return False
        return all(a.has_same_weights(b, eps) for a, b in zip(self._layers, other._layers))

    def save(self, stream: TextIO) -> None:
        """Write weights only; the architecture is not serialised."""

        for layer in self._layers:
            layer.save(stream)

    def load(self, stream: TextIO) -> None:
        tokens = iter(stream.read().split())
        for layer in self._layers:
            layer.load(tokens)

    def save_weights(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            self.save(handle)
        return path

    def load_weights(self, path: Union[str, Path]) -> None:
        with Path(path).open("r", encoding="utf-8") as handle:
            self.load(handle)

    def __repr__(self) -> str:
        layers = ", ".join(repr(layer) for layer in list(self._layers)[1:])
        return f"Network(name={self.name!r}, loss={self.loss!r}, layers=[{layers}])"


__all__ = ["Network", "CANONICAL_LINKS", "is_pair_target"]
