"""Pure in-memory synthetic datasets."""

from __future__ import annotations

import numpy as np

from .registry import DatasetSpec, as_rows, deterministic_split, register_dataset, take


@register_dataset("xor")
def xor(low: float = -1.0, high: float = 1.0, **_: object) -> DatasetSpec:
    """The four XOR corners labelled 0/1; test split equals the train split."""

    corners = np.array([[low, low], [low, high], [high, low], [high, high]], dtype=np.float64)
    labels = [0, 1, 1, 0]
    inputs = as_rows(corners)
    return DatasetSpec(
        name="xor",
        task_type="multiclass",
        d_in=2,
        d_out=2,
        train_inputs=inputs,
        train_targets=list(labels),
        test_inputs=inputs,
        test_targets=list(labels),
        num_classes=2,
        provenance={"type": "synthetic", "generator": "xor", "low": low, "high": high},
    )


@register_dataset("sine")
def sine(
    freq: float = 1.0,
    n_points: int = 64,
    seed: int = 0,
    noise: float = 0.05,
    test_split: float = 0.25,
    **_: object,
) -> DatasetSpec:
    """Noisy ``sin(freq * pi * x)`` on ``[-1, 1]`` as vector regression targets."""

    rng = np.random.default_rng(seed)
    x = np.linspace(-1.0, 1.0, n_points).reshape(-1, 1)
    y = np.sin(freq * np.pi * x) + noise * rng.standard_normal(size=x.shape)
    inputs, targets = as_rows(x), as_rows(y)
    train_idx, test_idx = deterministic_split(n_points, test_split=test_split, seed=seed)
    return DatasetSpec(
        name="sine",
        task_type="regression",
        d_in=1,
        d_out=1,
        train_inputs=take(inputs, train_idx),
        train_targets=take(targets, train_idx),
        test_inputs=take(inputs, test_idx),
        test_targets=take(targets, test_idx),
        provenance={
            "type": "synthetic",
            "generator": "sine",
            "freq": freq,
            "n_points": n_points,
            "seed": seed,
            "noise": noise,
            "test_split": test_split,
        },
    )


@register_dataset("blobs")
def blobs(
    num_classes: int = 3,
    n_per_class: int = 40,
    dim: int = 2,
    spread: float = 0.4,
    seed: int = 0,
    test_split: float = 0.25,
    **_: object,
) -> DatasetSpec:
    """Isotropic Gaussian clusters around random centres, labelled by cluster."""

    rng = np.random.default_rng(seed)
    centres = rng.uniform(-2.0, 2.0, size=(num_classes, dim))
    points = []
    labels = []
    for label, centre in enumerate(centres):
        points.append(centre + spread * rng.standard_normal((n_per_class, dim)))
        labels.extend([label] * n_per_class)
    inputs = as_rows(np.vstack(points))
    train_idx, test_idx = deterministic_split(len(inputs), test_split=test_split, seed=seed)
    return DatasetSpec(
        name="blobs",
        task_type="multiclass",
        d_in=dim,
        d_out=num_classes,
        train_inputs=take(inputs, train_idx),
        train_targets=take(labels, train_idx),
        test_inputs=take(inputs, test_idx),
        test_targets=take(labels, test_idx),
        num_classes=num_classes,
        provenance={
            "type": "synthetic",
            "generator": "blobs",
            "num_classes": num_classes,
            "n_per_class": n_per_class,
            "dim": dim,
            "spread": spread,
            "seed": seed,
            "test_split": test_split,
        },
    )


__all__ = ["xor", "sine", "blobs"]
