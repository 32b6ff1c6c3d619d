"""chainnet public API."""

from .core import activations, losses, optimizers, types  # noqa: F401
from .core.errors import DimensionMismatchError, NNError, UnknownModeError
from .core.layers import FullyConnectedLayer, InputLayer, Layer, LayerChain
from .core.types import GradCheckMode, Result, Shape3D
from .network import Network
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import Trainer

__all__ = [
    "DimensionMismatchError",
    "FullyConnectedLayer",
    "GradCheckMode",
    "InputLayer",
    "Layer",
    "LayerChain",
    "NNError",
    "Network",
    "Result",
    "Shape3D",
    "Trainer",
    "UnknownModeError",
    "activations",
    "load_preset",
    "losses",
    "optimizers",
    "presets",
    "run_pipeline",
    "types",
]
