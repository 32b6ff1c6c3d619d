"""Exception hierarchy for chainnet."""

from __future__ import annotations


class NNError(Exception):
    """Base class for network configuration and data errors."""


class DimensionMismatchError(NNError, ValueError):
    """Raised when a vector, label or layer does not fit the network shape."""


class UnknownModeError(NNError, ValueError):
    """Raised for an unrecognised gradient-check mode."""


__all__ = ["NNError", "DimensionMismatchError", "UnknownModeError"]
