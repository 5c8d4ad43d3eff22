"""Track checkpoint graph."""

from .checkpoints import Checkpoint, CheckpointGraph, Pose

__all__ = ["Checkpoint", "CheckpointGraph", "Pose"]
