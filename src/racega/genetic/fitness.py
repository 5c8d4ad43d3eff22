"""Fitness evaluation: episode statistics folded into a running average."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from racega.genetic.genome import Genome
from racega.runner.results import EpisodeResult


@dataclass
class FitnessWeights:
    speed: float = 1.0
    checkpoint: float = 5.0
    lap: float = 10.0
    min_episode_duration: float = 0.1


class FitnessEvaluator:
    """Score an episode and fold it into the genome's running average."""

    def __init__(self, weights: Optional[FitnessWeights] = None) -> None:
        self.weights = weights or FitnessWeights()

    @classmethod
    def from_config(cls, cfg) -> "FitnessEvaluator":
        return cls(
            FitnessWeights(
                speed=float(cfg.w_speed),
                checkpoint=float(cfg.w_checkpoint),
                lap=float(cfg.w_lap),
                min_episode_duration=float(cfg.min_episode_duration),
            )
        )

    def average_speed(self, result: EpisodeResult) -> float:
        duration = max(float(result.duration), self.weights.min_episode_duration)
        speed = float(result.distance) / duration
        return speed if math.isfinite(speed) and speed > 0.0 else 0.0

    def episode_fitness(self, result: EpisodeResult) -> float:
        w = self.weights
        score = (
            w.checkpoint * max(int(result.checkpoints_passed), 0)
            + w.lap * max(int(result.laps_completed), 0)
            + w.speed * self.average_speed(result)
        )
        if not math.isfinite(score) or score < 0.0:
            return 0.0
        return score

    def evaluate(self, genome: Genome, result: EpisodeResult, episode: int) -> float:
        """Update ``genome`` in place and return this episode's fitness."""

        if episode < 1:
            raise ValueError(f"episode numbers start at 1, got {episode}")

        score = self.episode_fitness(result)
        speed = self.average_speed(result)
        genome.fitness = (genome.fitness * (episode - 1) + score) / episode
        genome.avg_speed = (genome.avg_speed * (episode - 1) + speed) / episode
        genome.checkpoints_passed += max(int(result.checkpoints_passed), 0)
        genome.laps_completed += max(int(result.laps_completed), 0)
        genome.total_distance += max(float(result.distance), 0.0)
        genome.episodes_evaluated += 1
        return score


__all__ = ["FitnessEvaluator", "FitnessWeights"]
