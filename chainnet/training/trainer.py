"""Mini-batch training loop with per-task gradient accumulation."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, List, Mapping, Optional, Sequence

from ..core.types import Target

if TYPE_CHECKING:  # pragma: no cover
    from ..network import Network

logger = logging.getLogger(__name__)

#: Default upper bound on concurrent tasks per mini-batch.
DEFAULT_TASK_SIZE = 8
#: Examples used for each per-epoch Hessian estimate.
HESSIAN_SAMPLE_CAP = 500
#: Mini-batches between two checks for non-finite weights.
DIVERGENCE_CHECK_INTERVAL = 100


def partition(offset: int, size: int, thread_count: int) -> List[range]:
    """Split ``[offset, offset + size)`` into at most ``thread_count`` contiguous ranges.

    Every range but the last holds ``ceil(size / tasks)`` indices; the last
    absorbs the remainder.
    """

    tasks = max(1, min(size, thread_count))
    per_task = math.ceil(size / tasks)
    end = offset + size
    ranges = []
    for k in range(tasks):
        start = offset + k * per_task
        ranges.append(range(start, min(end, start + per_task)))
    return ranges


class Trainer:
    """Run epochs of mini-batch backpropagation on a :class:`Network`.

    ``callbacks`` are observer objects with optional ``on_batch(step, metrics)``
    and ``on_epoch(epoch, metrics)`` methods. They, and the plain ``on_batch``
    / ``on_epoch`` callables given to :meth:`train`, always run on the calling
    thread, between mini-batches.

    Within one mini-batch each worker accumulates into its own gradient slot;
    the slots are summed after the join. The merged gradient is therefore the
    same for any thread count up to floating-point summation order.
    """

    def __init__(
        self,
        network: "Network",
        callbacks: Sequence[object] | None = None,
        *,
        divergence_check_interval: int = DIVERGENCE_CHECK_INTERVAL,
        hessian_samples: int = HESSIAN_SAMPLE_CAP,
    ) -> None:
        if divergence_check_interval < 1:
            raise ValueError("divergence_check_interval must be >= 1")
        self.network = network
        self.callbacks = list(callbacks or [])
        self.divergence_check_interval = divergence_check_interval
        self.hessian_samples = hessian_samples
        self.steps = 0

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
    ) -> bool:
        """Return ``True`` if every epoch completed without weights diverging.

        Intra-layer work is left to numpy's vectorised kernels; the only
        parallelism configured here is the per-batch worker pool, which is
        skipped entirely when a single worker would run.
        """

        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if thread_count < 1:
            raise ValueError("thread_count must be >= 1")

        net = self.network
        layers = net.layers
        if reset_weights:
            net.init_weight()
        workers = min(batch_size, thread_count)
        layers.ensure_tasks(workers)
        net.optimizer.reset()

        logger.debug(
            "Training on %d samples: batch_size=%d, workers=%d, epochs=%d",
            data_size,
            batch_size,
            workers,
            epochs,
        )
        args = (data_size, input_fn, output_fn, batch_size, epochs, on_batch, on_epoch, thread_count)
        if workers == 1:
            return self._run_epochs(None, *args)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return self._run_epochs(pool, *args)

    # ------------------------------------------------------------------
    # Internal helpers

    def _run_epochs(
        self,
        pool: Optional[ThreadPoolExecutor],
        data_size: int,
        input_fn: Callable[[int], Sequence[float]],
        output_fn: Callable[[int, int], Target],
        batch_size: int,
        epochs: int,
        on_batch: Optional[Callable[[], None]],
        on_epoch: Optional[Callable[[], None]],
        thread_count: int,
    ) -> bool:
        net = self.network
        layers = net.layers
        for epoch in range(1, epochs + 1):
            if net.optimizer.requires_hessian:
                net.calc_hessian(data_size, input_fn, self.hessian_samples)

            for batch_index, offset in enumerate(range(0, data_size, batch_size)):
                size = min(batch_size, data_size - offset)
                self._train_once(pool, offset, size, input_fn, output_fn, thread_count)
                self.steps += 1
                self._emit_batch(on_batch, epoch, batch_index, size)

                if batch_index % self.divergence_check_interval == 0 and layers.is_exploded():
                    logger.warning(
                        "Detected non-finite value in weights (epoch %d, batch %d); "
                        "stop learning.",
                        epoch,
                        batch_index,
                    )
                    return False

            self._emit_epoch(on_epoch, epoch, data_size)
        return True

    def _train_once(self, pool, offset, size, input_fn, output_fn, thread_count) -> None:
        net = self.network
        if size == 1:
            target = output_fn(offset, 0)
            net.bprop(net.fprop(input_fn(offset)), target)
            net.layers.update_weights(net.optimizer, 1, 1)
            return
        self._train_onebatch(pool, offset, size, input_fn, output_fn, thread_count)

    def _train_onebatch(self, pool, offset, size, input_fn, output_fn, thread_count) -> None:
        net = self.network
        ranges = partition(offset, size, thread_count)

        def work(task_id: int) -> None:
            for j in ranges[task_id]:
                # fetch the target first: output_fn may itself run fprop on this slot
                target = output_fn(j, task_id)
                net.bprop(net.fprop(input_fn(j), task_id), target, task_id)

        if pool is None:
            for task_id in range(len(ranges)):
                work(task_id)
        else:
            list(pool.map(work, range(len(ranges))))
        net.layers.update_weights(net.optimizer, len(ranges), size)

    def _emit_batch(
        self,
        on_batch: Optional[Callable[[], None]],
        epoch: int,
        batch_index: int,
        size: int,
    ) -> None:
        if on_batch is not None:
            on_batch()
        metrics: Mapping[str, float] = {
            "epoch": epoch,
            "batch": batch_index,
            "batch_size": size,
        }
        for callback in self.callbacks:
            if hasattr(callback, "on_batch"):
                callback.on_batch(self.steps, metrics)  # type: ignore[attr-defined]

    def _emit_epoch(
        self, on_epoch: Optional[Callable[[], None]], epoch: int, data_size: int
    ) -> None:
        if on_epoch is not None:
            on_epoch()
        metrics: Mapping[str, float] = {"epoch": epoch, "samples": data_size, "steps": self.steps}
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]


__all__ = [
    "DEFAULT_TASK_SIZE",
    "DIVERGENCE_CHECK_INTERVAL",
    "HESSIAN_SAMPLE_CAP",
    "Trainer",
    "partition",
]
