"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Sequence

import numpy as np

from ..core.types import Array, Target

TASK_TYPES = ("regression", "multiclass")


@dataclass(frozen=True)
class DatasetSpec:
    """In-memory dataset with a train and a test split.

    Attributes
    ----------
    name:
        Registry name the dataset was built from.
    task_type:
        ``"regression"`` (targets are vectors) or ``"multiclass"`` (targets
        are integer labels).
    train_inputs / train_targets:
        Parallel sequences consumed by :meth:`chainnet.Network.fit`.
    test_inputs / test_targets:
        Held-out examples; may alias the training split for toy problems.
    provenance:
        Generator parameters recorded in the run manifest.
    """

    name: str
    task_type: str
    d_in: int
    d_out: int
    train_inputs: List[Array]
    train_targets: List[Target]
    test_inputs: List[Array]
    test_targets: List[Target]
    num_classes: int | None = None
    provenance: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.task_type not in TASK_TYPES:
            raise ValueError(f"task_type must be one of {TASK_TYPES}, got {self.task_type!r}")

    @property
    def splits(self) -> Dict[str, int]:
        return {"train": len(self.train_inputs), "test": len(self.test_inputs)}


DatasetFactory = Callable[..., DatasetSpec]

_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(name: str, factory: DatasetFactory | None = None):
    """Register ``factory`` under ``name``; usable as a decorator."""

    def decorator(fn: DatasetFactory) -> DatasetFactory:
        _REGISTRY[name] = fn
        return fn

    if factory is not None:
        return decorator(factory)
    return decorator


def available_datasets() -> Iterable[str]:
    return sorted(_REGISTRY)


def get_dataset(name: str, **options: Any) -> DatasetSpec:
    if name not in _REGISTRY:
        available = ", ".join(available_datasets())
        raise KeyError(f"Unknown dataset {name!r}. Available datasets: {available}")
    return _REGISTRY[name](**options)


def as_rows(values: np.ndarray) -> List[Array]:
    return [np.asarray(row, dtype=np.float64) for row in values]


def deterministic_split(
    n_samples: int, *, test_split: float, seed: int
) -> tuple[np.ndarray, np.ndarray]:
    """Return shuffled ``(train, test)`` index arrays."""

    if not 0 <= test_split < 1:
        raise ValueError("test_split must be in [0, 1)")
    rng = np.random.default_rng(seed)
    indices = np.arange(n_samples)
    rng.shuffle(indices)
    n_test = int(round(n_samples * test_split))
    return indices[n_test:], indices[:n_test]


def take(values: Sequence, indices: np.ndarray) -> list:
    return [values[int(i)] for i in indices]


__all__ = [
    "DatasetSpec",
    "available_datasets",
    "deterministic_split",
    "get_dataset",
    "register_dataset",
]
