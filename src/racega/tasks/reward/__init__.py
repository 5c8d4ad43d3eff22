"""Reward shaping for lap racing."""

from .base import RewardComponent, RewardComponents, RewardComputation, RewardStep, RewardStrategy
from .components import (
    AlignmentReward,
    CirclingPenalty,
    LateTrainingPenalty,
    ProgressReward,
    SpeedReward,
    StationaryPenalty,
    WallProximityReward,
)
from .composer import ComposedReward
from .shaper import RewardShaper

__all__ = [
    "AlignmentReward",
    "CirclingPenalty",
    "ComposedReward",
    "LateTrainingPenalty",
    "ProgressReward",
    "RewardComponent",
    "RewardComponents",
    "RewardComputation",
    "RewardShaper",
    "RewardStep",
    "RewardStrategy",
    "SpeedReward",
    "StationaryPenalty",
    "WallProximityReward",
]
