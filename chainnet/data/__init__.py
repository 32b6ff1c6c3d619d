"""Dataset registry and built-in synthetic datasets."""

from . import synthetic  # noqa: F401  (registers the built-in datasets)
from .registry import DatasetSpec, available_datasets, get_dataset, register_dataset

__all__ = ["DatasetSpec", "available_datasets", "get_dataset", "register_dataset"]
