"""Deterministic checkpoint-pursuit controller.

Steers at the bearing to the next checkpoint and holds a target speed. It
does not learn; it gives smoke runs and integration tests a policy that
actually laps the track.
"""
from __future__ import annotations

import math
from typing import Dict, Optional

import numpy as np

from racega.genetic.hyperparameters import Hyperparameters
from racega.policies.base import PolicyFactory, PolicySpec


class CheckpointPursuitPolicy:
    def __init__(
        self,
        *,
        max_speed: float = 30.0,
        target_speed: float = 15.0,
        steer_gain: float = 2.0,
        exploration: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.max_speed = max(float(max_speed), 1e-6)
        self.target_speed = float(target_speed)
        self.steer_gain = float(steer_gain)
        self.exploration = float(exploration)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.steps = 0
        self.total_reward = 0.0

    def act(self, obs: np.ndarray) -> np.ndarray:
        speed = float(obs[0]) * self.max_speed
        bearing = math.atan2(float(obs[3]), float(obs[2]))
        steering = self.steer_gain * bearing
        if self.exploration > 0.0:
            steering += self.rng.normal(0.0, self.exploration)
        # Ease off in tight turns.
        target = self.target_speed * max(0.3, math.cos(min(abs(bearing), math.pi / 2)))
        throttle = 1.0 if speed < target else 0.0
        brake = 1.0 if speed > 1.2 * target else 0.0
        self.steps += 1
        return np.array([np.clip(steering, -1.0, 1.0), throttle, brake], dtype=np.float32)

    def observe(self, reward: float, done: bool) -> Optional[Dict[str, float]]:
        self.total_reward += float(reward)
        return None

    def end_episode(self) -> None:
        return None

    def set_exploration(self, rate: float) -> None:
        self.exploration = float(rate) * 0.1

    def close(self) -> None:
        return None


def build_pursuit_policy(hyperparameters: Hyperparameters, spec: PolicySpec) -> CheckpointPursuitPolicy:
    settings = spec.settings
    return CheckpointPursuitPolicy(
        max_speed=spec.max_speed,
        target_speed=float(settings.get("target_speed", 15.0)),
        steer_gain=float(settings.get("steer_gain", 2.0)),
    )


PolicyFactory.register("pursuit", build_pursuit_policy)


__all__ = ["CheckpointPursuitPolicy", "build_pursuit_policy"]
