"""Training loop; import :mod:`chainnet.training.pipelines` for config-driven runs."""

from .trainer import Trainer

__all__ = ["Trainer"]
