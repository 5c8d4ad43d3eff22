"""Device selection and checkpoint loading for torch-backed policies."""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

import torch

logger = logging.getLogger(__name__)

DEVICE_ENV_KEY = "RACEGA_DEVICE"


def safe_load(path: str, *, map_location: Any | None = None) -> Any:
    """Load a policy checkpoint written by ``PPOPolicy.save``.

    Checkpoints carry optimizer state and a hyperparameter dict, which the
    ``weights_only`` loader of recent torch releases rejects.
    """

    return torch.load(path, map_location=map_location, weights_only=False)


def resolve_device(preferred: Optional[str] = None) -> torch.device:
    """Pick the torch device for a policy.

    ``preferred`` (usually ``policy.device`` from the config) wins, then the
    ``RACEGA_DEVICE`` environment variable, then CUDA when available.
    """

    requested = preferred or os.environ.get(DEVICE_ENV_KEY)
    choice = str(requested).strip().lower() if requested else ""
    if choice == "cpu":
        return torch.device("cpu")
    if choice in {"cuda", "gpu"} or choice.startswith("cuda:"):
        if torch.cuda.is_available():
            return torch.device("cuda" if choice == "gpu" else choice)
        logger.warning("Device %r requested but CUDA is unavailable; using CPU", requested)
        return torch.device("cpu")
    if choice:
        logger.warning("Unknown device %r; expected 'cpu' or 'cuda'", requested)
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


__all__ = ["DEVICE_ENV_KEY", "resolve_device", "safe_load"]
