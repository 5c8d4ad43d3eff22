"""Observation vector assembled from vehicle state and checkpoint geometry."""
from __future__ import annotations

import math

import numpy as np

from racega.envs.vehicle import RayCategory, VehicleParams, VehicleState
from racega.track.checkpoints import CheckpointGraph
from racega.utils.geometry import to_body_frame

BASE_FEATURES = 6
RAY_FEATURES = 3


def observation_size(params: VehicleParams) -> int:
    return BASE_FEATURES + RAY_FEATURES * len(params.ray_angles_deg)


def build_observation(
    state: VehicleState,
    graph: CheckpointGraph,
    expected_index: int,
    params: VehicleParams,
) -> np.ndarray:
    """Layout: body-frame velocity, bearing (cos, sin) and distance to the
    next checkpoint, progress index, then (distance, is_wall, is_checkpoint)
    per ray."""

    obs = np.zeros(observation_size(params), dtype=np.float32)
    v_max = max(params.max_speed, 1e-6)
    obs[0] = state.speed / v_max
    obs[1] = state.lateral_speed / v_max

    target_x, target_y = graph.pose(expected_index).position
    dx, dy = target_x - state.x, target_y - state.y
    dist = math.hypot(dx, dy)
    if dist > 1e-9:
        bx, by = to_body_frame((dx / dist, dy / dist), state.heading)
    else:
        bx, by = 1.0, 0.0
    obs[2] = bx
    obs[3] = by
    obs[4] = min(dist / params.distance_scale, 1.0)
    obs[5] = expected_index / graph.checkpoint_count()

    reach = max(params.ray_range, 1e-6)
    for i, ray in enumerate(state.rays[: len(params.ray_angles_deg)]):
        base = BASE_FEATURES + RAY_FEATURES * i
        obs[base] = min(ray.distance / reach, 1.0)
        obs[base + 1] = 1.0 if ray.category == RayCategory.WALL else 0.0
        obs[base + 2] = 1.0 if ray.category == RayCategory.CHECKPOINT else 0.0
    return obs


__all__ = ["BASE_FEATURES", "RAY_FEATURES", "build_observation", "observation_size"]
