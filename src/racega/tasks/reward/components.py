"""Per-tick shaped reward components."""

from __future__ import annotations

import math
from typing import Optional

from racega.tasks.reward.base import RewardComponents, RewardStep
from racega.utils.geometry import heading_vector


def _distance_to_target(step: RewardStep) -> float:
    tx, ty = step.target_position
    return math.hypot(tx - step.state.x, ty - step.state.y)


class SpeedReward:
    """Bell-shaped speed reward peaking at a fraction of the fastest speed seen.

    Backward motion earns ``reverse_penalty`` instead, doubled once it has
    lasted longer than ``reverse_duration_threshold``.
    """

    REVERSE_EPSILON = 0.05

    def __init__(
        self,
        *,
        optimal_speed_multiplier: float = 0.7,
        min_reference_speed: float = 5.0,
        factor: float = 0.5,
        reverse_penalty: float = -0.2,
        reverse_duration_threshold: float = 1.0,
    ) -> None:
        self.optimal_speed_multiplier = float(optimal_speed_multiplier)
        self.min_reference_speed = float(min_reference_speed)
        self.factor = float(factor)
        self.reverse_penalty = float(reverse_penalty)
        self.reverse_duration_threshold = float(reverse_duration_threshold)
        self.observed_max_speed = 0.0
        self._reverse_time = 0.0

    def reset(self) -> None:
        # The observed maximum is a property of the car, not of an episode.
        self._reverse_time = 0.0

    @property
    def optimal_speed(self) -> float:
        reference = max(self.observed_max_speed, self.min_reference_speed)
        return self.optimal_speed_multiplier * reference

    def compute(self, step: RewardStep) -> RewardComponents:
        dt = step.timestep
        forward = step.state.speed
        self.observed_max_speed = max(self.observed_max_speed, abs(forward))

        if forward < -self.REVERSE_EPSILON:
            self._reverse_time += dt
            penalty = self.reverse_penalty
            if self._reverse_time > self.reverse_duration_threshold:
                penalty *= 2.0
            return {"speed/reverse": penalty * dt}

        self._reverse_time = 0.0
        ratio = forward / self.optimal_speed
        return {"speed/bell": self.factor * max(0.0, ratio * (2.0 - ratio)) * dt}


class StationaryPenalty:
    def __init__(
        self,
        *,
        min_speed_threshold: float = 1.0,
        stationary_timeout: float = 3.0,
        penalty: float = -5.0,
    ) -> None:
        self.min_speed_threshold = float(min_speed_threshold)
        self.stationary_timeout = float(stationary_timeout)
        self.penalty = float(penalty)
        self.slow_time = 0.0

    def reset(self) -> None:
        self.slow_time = 0.0

    def compute(self, step: RewardStep) -> RewardComponents:
        if step.state.speed_magnitude >= self.min_speed_threshold:
            self.slow_time = 0.0
            return {}
        self.slow_time += step.timestep
        if self.slow_time > self.stationary_timeout:
            return {"stationary": self.penalty * step.timestep}
        return {}


class ProgressReward:
    """Reward for closing the straight-line distance to the expected checkpoint."""

    def __init__(self, *, factor: float = 0.1) -> None:
        self.factor = float(factor)
        self._target: Optional[int] = None
        self._last_distance = 0.0

    def reset(self) -> None:
        self._target = None
        self._last_distance = 0.0

    rebase = reset

    def compute(self, step: RewardStep) -> RewardComponents:
        dist = _distance_to_target(step)
        if self._target != step.target_index:
            self._target = step.target_index
            self._last_distance = dist
            return {}
        gain = self._last_distance - dist
        self._last_distance = dist
        if gain <= 0.0:
            return {}
        return {"progress": self.factor * gain}


class AlignmentReward:
    def __init__(self, *, factor: float = 0.5) -> None:
        self.factor = float(factor)

    def reset(self) -> None:
        return None

    def compute(self, step: RewardStep) -> RewardComponents:
        tx, ty = step.target_position
        dx, dy = tx - step.state.x, ty - step.state.y
        dist = math.hypot(dx, dy)
        if dist < 1e-9 or self.factor == 0.0:
            return {}
        hx, hy = heading_vector(step.state.heading)
        cos_theta = (dx * hx + dy * hy) / dist
        return {"alignment": self.factor * max(0.0, cos_theta) ** 2 * step.timestep}


class CirclingPenalty:
    """Penalise covering ground without getting closer to the next checkpoint.

    Evaluated once per ``interval`` of simulated time.
    """

    EPSILON = 0.01

    def __init__(
        self,
        *,
        interval: float = 5.0,
        distance_threshold: float = 10.0,
        efficiency_floor: float = 0.1,
        penalty: float = -0.2,
    ) -> None:
        self.interval = float(interval)
        self.distance_threshold = float(distance_threshold)
        self.efficiency_floor = float(efficiency_floor)
        self.penalty = float(penalty)
        self.last_efficiency: Optional[float] = None
        self.reset()

    def reset(self) -> None:
        self._elapsed = 0.0
        self._traveled = 0.0
        self._window_target: Optional[int] = None
        self._window_distance = 0.0
        self._target_changed = False

    rebase = reset

    def compute(self, step: RewardStep) -> RewardComponents:
        dist = _distance_to_target(step)
        if self._window_target is None:
            self._open_window(step.target_index, dist)
        elif step.target_index != self._window_target:
            # Reaching a checkpoint is progress by definition.
            self._target_changed = True

        self._elapsed += step.timestep
        self._traveled += max(step.distance_delta, 0.0)
        if self._elapsed < self.interval:
            return {}

        result: RewardComponents = {}
        if not self._target_changed:
            progress = abs(self._window_distance - dist)
            efficiency = progress / (self._traveled + self.EPSILON)
            self.last_efficiency = efficiency
            if self._traveled > self.distance_threshold and efficiency < self.efficiency_floor:
                result = {"circling": self.penalty}
        self._elapsed = 0.0
        self._traveled = 0.0
        self._target_changed = False
        self._open_window(step.target_index, dist)
        return result

    def _open_window(self, target: int, dist: float) -> None:
        self._window_target = target
        self._window_distance = dist


class WallProximityReward:
    """Reward keeping a comfortable distance from walls seen by the rays."""

    def __init__(
        self,
        *,
        optimal_distance: float = 1.0,
        max_distance: float = 2.5,
        factor: float = 0.0,
    ) -> None:
        self.optimal_distance = float(optimal_distance)
        self.max_distance = float(max_distance)
        self.factor = float(factor)

    def reset(self) -> None:
        return None

    def compute(self, step: RewardStep) -> RewardComponents:
        if self.factor == 0.0:
            return {}
        close = [d for d in step.state.wall_distances if d <= self.max_distance]
        if not close:
            return {}
        scores = [max(0.0, 1.0 - abs(d - self.optimal_distance) / self.optimal_distance) for d in close]
        return {"wall_proximity": self.factor * sum(scores) / len(scores) * step.timestep}


class LateTrainingPenalty:
    """Time and needless-braking penalties, active once the run has matured."""

    def __init__(
        self,
        *,
        maturity_laps: int = 100,
        time_penalty: float = -0.05,
        brake_penalty: float = -0.5,
        brake_threshold: float = 0.1,
        brake_speed_threshold: float = 5.0,
    ) -> None:
        self.maturity_laps = int(maturity_laps)
        self.time_penalty = float(time_penalty)
        self.brake_penalty = float(brake_penalty)
        self.brake_threshold = float(brake_threshold)
        self.brake_speed_threshold = float(brake_speed_threshold)

    def reset(self) -> None:
        return None

    def compute(self, step: RewardStep) -> RewardComponents:
        if step.run_laps <= self.maturity_laps:
            return {}
        dt = step.timestep
        result: RewardComponents = {"late/time": self.time_penalty * dt}
        state = step.state
        if state.brake > self.brake_threshold and state.speed > self.brake_speed_threshold:
            result["late/brake"] = self.brake_penalty * dt
        return result


__all__ = [
    "AlignmentReward",
    "CirclingPenalty",
    "LateTrainingPenalty",
    "ProgressReward",
    "SpeedReward",
    "StationaryPenalty",
    "WallProximityReward",
]
