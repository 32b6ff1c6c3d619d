"""Core numerical primitives for chainnet."""

from . import activations, errors, initializers, layers, losses, optimizers, types

__all__ = ["activations", "errors", "initializers", "layers", "losses", "optimizers", "types"]
