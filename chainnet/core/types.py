"""Core typing contracts for chainnet."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Protocol, TextIO, Tuple, Union

import numpy as np

Array = np.ndarray

#: A training signal: dense target vector, class label or ``(label, value)``.
Target = Union[Array, int, Tuple[int, float]]


@dataclass(frozen=True)
class Shape3D:
    """Width x height x channels of a layer boundary."""

    width: int
    height: int = 1
    depth: int = 1

    @property
    def size(self) -> int:
        return self.width * self.height * self.depth


class GradCheckMode(str, Enum):
    """Which weight coordinates :meth:`Network.gradient_check` visits."""

    ALL = "all"
    RANDOM = "random"


@dataclass
class Result:
    """Classification outcome with a lazily grown confusion matrix.

    ``confusion_matrix[predicted][actual]`` holds the number of examples the
    network labelled ``predicted`` whose true label was ``actual``.
    """

    num_success: int = 0
    num_total: int = 0
    confusion_matrix: Dict[int, Dict[int, int]] = field(default_factory=dict)

    def record(self, predicted: int, actual: int) -> None:
        if predicted == actual:
            self.num_success += 1
        self.num_total += 1
        row = self.confusion_matrix.setdefault(predicted, {})
        row[actual] = row.get(actual, 0) + 1

    def count(self, predicted: int, actual: int) -> int:
        return self.confusion_matrix.get(predicted, {}).get(actual, 0)

    def accuracy(self) -> float:
        if self.num_total == 0:
            return 0.0
        return self.num_success * 100.0 / self.num_total

    def labels(self) -> List[int]:
        seen = set(self.confusion_matrix)
        for row in self.confusion_matrix.values():
            seen.update(row)
        return sorted(seen)

    def summary(self) -> str:
        return f"accuracy:{self.accuracy():g}% ({self.num_success}/{self.num_total})"

    def detail(self) -> str:
        labels = self.labels()
        lines = [self.summary()]
        lines.append(f"{'*':>5} " + "".join(f"{c:>5} " for c in labels))
        for r in labels:
            lines.append(f"{r:>5} " + "".join(f"{self.count(r, c):>5} " for c in labels))
        return "\n".join(lines)

    def print_summary(self, stream: TextIO | None = None) -> None:
        print(self.summary(), file=stream or sys.stdout)

    def print_detail(self, stream: TextIO | None = None) -> None:
        print(self.detail(), file=stream or sys.stdout)

    def to_dict(self) -> Mapping[str, object]:
        return {
            "accuracy": self.accuracy(),
            "num_success": self.num_success,
            "num_total": self.num_total,
            "confusion_matrix": {
                str(p): {str(a): n for a, n in row.items()}
                for p, row in sorted(self.confusion_matrix.items())
            },
        }


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`chainnet.training.pipelines.run_pipeline`."""

    completed: bool
    epochs: int
    metrics_path: str
    manifest_path: str
    weights_path: str
    summary_path: str = ""


class TrainingObserver(Protocol):
    """Observer notified on the orchestrating thread during training."""

    def on_batch(self, step: int, metrics: Mapping[str, float]) -> None:
        """Called after every mini-batch weight update."""

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        """Called after every full pass over the data."""
