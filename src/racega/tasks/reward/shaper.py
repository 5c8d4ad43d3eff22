"""Reward shaper: per-tick components plus one-off event bonuses."""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Set

from racega.tasks.reward.base import RewardComponent, RewardComputation, RewardStep
from racega.tasks.reward.components import (
    AlignmentReward,
    CirclingPenalty,
    LateTrainingPenalty,
    ProgressReward,
    SpeedReward,
    StationaryPenalty,
    WallProximityReward,
)
from racega.tasks.reward.composer import ComposedReward


class RewardShaper:
    """One agent's reward stream.

    Discrete bonuses registered through the ``on_*`` hooks are held until the
    next :meth:`step` call and folded into that tick's reward, so each event
    pays exactly once.
    """

    def __init__(
        self,
        components: Sequence[RewardComponent],
        *,
        checkpoint_reward: float = 1.0,
        checkpoint_index_bonus: float = 0.5,
        lap_reward: float = 10.0,
        wrong_checkpoint_penalty: float = -1.0,
        collision_penalty: float = -1.0,
    ) -> None:
        self.composed = ComposedReward(components)
        self.checkpoint_reward = float(checkpoint_reward)
        self.checkpoint_index_bonus = float(checkpoint_index_bonus)
        self.lap_reward = float(lap_reward)
        self.wrong_checkpoint_penalty = float(wrong_checkpoint_penalty)
        self.collision_penalty = float(collision_penalty)
        self._paid: Set[int] = set()
        self._pending: Dict[str, float] = {}
        self.episode_total = 0.0

    @classmethod
    def from_config(cls, cfg) -> "RewardShaper":
        components = [
            SpeedReward(
                optimal_speed_multiplier=cfg.optimal_speed_multiplier,
                min_reference_speed=cfg.min_reference_speed,
                factor=cfg.speed_reward_factor,
                reverse_penalty=cfg.reverse_penalty,
                reverse_duration_threshold=cfg.reverse_duration_threshold,
            ),
            StationaryPenalty(
                min_speed_threshold=cfg.min_speed_threshold,
                stationary_timeout=cfg.stationary_timeout,
                penalty=cfg.stationary_penalty,
            ),
            ProgressReward(factor=cfg.checkpoint_progress_factor),
            AlignmentReward(factor=cfg.alignment_reward_factor),
            CirclingPenalty(
                interval=cfg.progress_check_interval,
                distance_threshold=cfg.circling_distance_threshold,
                efficiency_floor=cfg.circling_efficiency_floor,
                penalty=cfg.circling_penalty,
            ),
            WallProximityReward(
                optimal_distance=cfg.wall_optimal_distance,
                max_distance=cfg.wall_max_distance,
                factor=cfg.wall_proximity_factor,
            ),
            LateTrainingPenalty(
                maturity_laps=cfg.maturity_laps,
                time_penalty=cfg.time_penalty,
                brake_penalty=cfg.brake_penalty,
                brake_threshold=cfg.brake_threshold,
                brake_speed_threshold=cfg.brake_speed_threshold,
            ),
        ]
        return cls(
            components,
            checkpoint_reward=cfg.checkpoint_reward,
            checkpoint_index_bonus=cfg.checkpoint_index_bonus,
            lap_reward=cfg.lap_reward,
            wrong_checkpoint_penalty=cfg.wrong_checkpoint_penalty,
            collision_penalty=cfg.collision_penalty,
        )

    def reset(self) -> None:
        self.composed.reset()
        self._paid.clear()
        self._pending.clear()
        self.episode_total = 0.0

    def rebase(self) -> None:
        """Forget distance baselines so a respawn teleport earns no progress."""

        self.composed.rebase()

    # ------------------------------------------------------------------
    # Discrete events
    # ------------------------------------------------------------------
    def on_checkpoint(self, index: int, checkpoint_count: int) -> float:
        if index in self._paid:
            return 0.0
        self._paid.add(index)
        bonus = self.checkpoint_reward + self.checkpoint_index_bonus * index / max(checkpoint_count, 1)
        self._add("event/checkpoint", bonus)
        return bonus

    def on_lap(self) -> float:
        self._paid.clear()
        self._add("event/lap", self.lap_reward)
        return self.lap_reward

    def on_wrong_checkpoint(self) -> float:
        self._add("event/wrong_checkpoint", self.wrong_checkpoint_penalty)
        return self.wrong_checkpoint_penalty

    def on_collision(self) -> float:
        self._add("event/collision", self.collision_penalty)
        return self.collision_penalty

    def on_respawn(self, penalty: float) -> float:
        if penalty:
            self._add("event/respawn", penalty)
        return penalty

    def _add(self, key: str, value: float) -> None:
        self._pending[key] = self._pending.get(key, 0.0) + float(value)

    # ------------------------------------------------------------------
    # Per tick
    # ------------------------------------------------------------------
    def step(self, step: Optional[RewardStep]) -> RewardComputation:
        """Reward for this tick; ``step=None`` flushes pending event rewards only."""

        if step is not None:
            _, breakdown = self.composed.compute(step)
        else:
            breakdown = {}
        for key, value in self._pending.items():
            breakdown[key] = breakdown.get(key, 0.0) + value
        self._pending.clear()
        total = float(sum(breakdown.values()))
        self.episode_total += total
        return total, breakdown


__all__ = ["RewardShaper"]
