"""Lap, episode and generation metrics tracked over a training run."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from racega.events import EventBus, LapCompleted, Subscription
from racega.genetic.population import GenerationSummary


@dataclass
class LapRecord:
    """One completed lap.

    Example:
        >>> LapRecord(agent_id=3, lap_number=1, lap_time=21.4, avg_speed=14.2, distance=303.9)
    """
    agent_id: int
    lap_number: int
    lap_time: float
    avg_speed: float
    distance: float

    FIELDS = ("agent_id", "lap_number", "lap_time", "avg_speed", "distance")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EpisodeMetrics:
    generation: int
    episode: int
    agent_id: int
    reason: str
    fitness: float
    total_reward: float
    checkpoints: int
    laps: int
    distance: float
    duration: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MetricsTracker:
    """Tracks laps, agent episodes and generation summaries.

    ``total_laps`` is read every tick by the late-training reward terms, so it
    is kept as a running counter rather than recomputed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.laps: List[LapRecord] = []
        self.episodes: List[EpisodeMetrics] = []
        self.generations: List[GenerationSummary] = []
        self.total_laps = 0
        self._subscription: Optional[Subscription] = None

    def attach(self, bus: EventBus) -> None:
        self.detach()
        self._subscription = bus.subscribe(LapCompleted, self._on_lap)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_lap(self, event: LapCompleted) -> None:
        self.add_lap(
            LapRecord(
                agent_id=event.agent_id,
                lap_number=event.lap_number,
                lap_time=event.lap_time,
                avg_speed=event.avg_speed,
                distance=event.distance,
            )
        )

    def add_lap(self, record: LapRecord) -> LapRecord:
        with self._lock:
            self.laps.append(record)
            self.total_laps += 1
        return record

    def add_episode(self, metrics: EpisodeMetrics) -> EpisodeMetrics:
        with self._lock:
            self.episodes.append(metrics)
        return metrics

    def add_generation(self, summary: GenerationSummary) -> GenerationSummary:
        with self._lock:
            self.generations.append(summary)
        return summary

    def best_lap(self) -> Optional[LapRecord]:
        with self._lock:
            if not self.laps:
                return None
            return min(self.laps, key=lambda lap: lap.lap_time)

    def get_latest(self, n: int = 1) -> List[EpisodeMetrics]:
        """Most recent episodes first."""
        return self.episodes[-n:][::-1]

    def get_rolling_stats(self, window: Optional[int] = None) -> Dict[str, Any]:
        """Aggregate the last ``window`` agent episodes (all when ``None``)."""

        with self._lock:
            episodes = self.episodes[-window:] if window else list(self.episodes)
            total_laps = self.total_laps
        if not episodes:
            return {
                "episodes": 0,
                "avg_fitness": 0.0,
                "avg_reward": 0.0,
                "avg_checkpoints": 0.0,
                "avg_laps": 0.0,
                "total_laps": total_laps,
                "end_reasons": {},
            }
        count = len(episodes)
        return {
            "episodes": count,
            "avg_fitness": sum(ep.fitness for ep in episodes) / count,
            "avg_reward": sum(ep.total_reward for ep in episodes) / count,
            "avg_checkpoints": sum(ep.checkpoints for ep in episodes) / count,
            "avg_laps": sum(ep.laps for ep in episodes) / count,
            "total_laps": total_laps,
            "end_reasons": dict(Counter(ep.reason for ep in episodes)),
        }

    def clear(self) -> None:
        with self._lock:
            self.laps.clear()
            self.episodes.clear()
            self.generations.clear()
            self.total_laps = 0


__all__ = ["EpisodeMetrics", "LapRecord", "MetricsTracker"]
