"""Base primitives shared by reward components.

Rewards are composed of independent components that each compute a portion
of the per-tick reward signal and report it under named keys for logging.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Protocol, Tuple, runtime_checkable

from racega.envs.vehicle import VehicleState

RewardComponents = Dict[str, float]
RewardComputation = Tuple[float, RewardComponents]


@dataclass
class RewardStep:
    """Canonical per-tick bundle passed to reward components."""

    agent_id: int
    state: VehicleState
    target_index: int
    target_position: Tuple[float, float]
    distance_delta: float
    current_time: float
    timestep: float
    run_laps: int = 0


@runtime_checkable
class RewardComponent(Protocol):
    """One aspect of the shaped reward (speed, progress, alignment, ...)."""

    def reset(self) -> None:
        """Forget per-episode state."""
        ...

    def compute(self, step: RewardStep) -> RewardComponents:
        """Return named reward contributions for this tick."""
        ...


@runtime_checkable
class RewardStrategy(Protocol):
    def reset(self) -> None:
        ...

    def compute(self, step: RewardStep) -> RewardComputation:
        ...


__all__ = [
    "RewardComponent",
    "RewardComponents",
    "RewardComputation",
    "RewardStep",
    "RewardStrategy",
]
