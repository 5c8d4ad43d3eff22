"""Genome: one hyperparameter configuration plus its tracked performance."""
from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from racega.genetic.hyperparameters import Hyperparameters

_ID_LOCK = threading.Lock()
_ID_COUNTER = itertools.count(1)


def next_agent_id() -> int:
    """Return a process-wide unique, stable agent id."""

    with _ID_LOCK:
        return next(_ID_COUNTER)


@dataclass
class Genome:
    hyperparameters: Hyperparameters = field(default_factory=Hyperparameters)
    fitness: float = 0.0
    checkpoints_passed: int = 0
    laps_completed: int = 0
    avg_speed: float = 0.0
    total_distance: float = 0.0
    episode_start_time: float = 0.0
    episodes_evaluated: int = 0
    agent_id: int = field(default_factory=next_agent_id)
    policy: Optional[Any] = field(default=None, repr=False, compare=False)

    def clone_elite(self) -> "Genome":
        """Carry this genome into the next generation.

        Hyperparameters are deep-copied so later mutation cannot alias across
        generations; metrics, the agent id and the trained policy are kept.
        """

        return Genome(
            hyperparameters=self.hyperparameters.clone(),
            fitness=self.fitness,
            checkpoints_passed=self.checkpoints_passed,
            laps_completed=self.laps_completed,
            avg_speed=self.avg_speed,
            total_distance=self.total_distance,
            episode_start_time=self.episode_start_time,
            episodes_evaluated=self.episodes_evaluated,
            agent_id=self.agent_id,
            policy=self.policy,
        )

    def mark_started(self, now: float) -> None:
        self.episode_start_time = float(now)

    def release(self) -> None:
        """Close and drop the policy handle, if any."""

        policy, self.policy = self.policy, None
        close = getattr(policy, "close", None)
        if callable(close):
            close()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "fitness": self.fitness,
            "checkpoints_passed": self.checkpoints_passed,
            "laps_completed": self.laps_completed,
            "avg_speed": self.avg_speed,
            "total_distance": self.total_distance,
            "episodes_evaluated": self.episodes_evaluated,
            "hyperparameters": self.hyperparameters.to_dict(),
        }


__all__ = ["Genome", "next_agent_id"]
