"""Outcome records produced when an agent's episode ends."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class EpisodeEndReason(str, Enum):
    LAPS_COMPLETE = "laps_complete"
    WRONG_CHECKPOINT = "wrong_checkpoint"
    COLLISION = "collision"
    OFF_TRACK = "off_track"
    TIMEOUT = "timeout"
    STALLED = "stalled"
    FAULT = "fault"
    STOPPED = "stopped"


@dataclass
class EpisodeResult:
    agent_id: int
    reason: EpisodeEndReason
    checkpoints_passed: int = 0
    laps_completed: int = 0
    distance: float = 0.0
    duration: float = 0.0
    total_reward: float = 0.0
    best_lap_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["reason"] = self.reason.value
        return payload


__all__ = ["EpisodeEndReason", "EpisodeResult"]
