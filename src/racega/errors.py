"""Error taxonomy shared across the training stack."""
from __future__ import annotations


class RacegaError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(RacegaError, ValueError):
    """A required collaborator or setting is missing or invalid; fatal at startup."""


class OutOfRangeError(RacegaError, IndexError):
    """An index fell outside the valid range of a bounded collection."""


class InvariantViolation(RacegaError, AssertionError):
    """Internal bookkeeping drifted (population size, duplicate active index, ...)."""


class TransientSimulationFault(RacegaError, RuntimeError):
    """An agent's simulation handle failed for one tick; skip it and continue."""


__all__ = [
    "ConfigurationError",
    "InvariantViolation",
    "OutOfRangeError",
    "RacegaError",
    "TransientSimulationFault",
]
