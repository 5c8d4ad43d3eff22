"""Vehicle boundary: state record, simulator protocol and a 2D kinematic model."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from racega.errors import TransientSimulationFault
from racega.track.checkpoints import CheckpointGraph, Pose
from racega.utils.geometry import wrap_to_pi

ACTION_LOW = np.array([-1.0, 0.0, 0.0], dtype=np.float32)
ACTION_HIGH = np.array([1.0, 1.0, 1.0], dtype=np.float32)
ACTION_DIM = 3

_RAY_SAMPLES = 24
_GROUND_MARGIN = 1.5


class RayCategory(IntEnum):
    NONE = 0
    WALL = 1
    CHECKPOINT = 2


@dataclass
class RaySample:
    distance: float
    category: RayCategory = RayCategory.NONE


@dataclass
class VehicleState:
    x: float
    y: float
    heading: float
    speed: float = 0.0
    lateral_speed: float = 0.0
    tilt: float = 0.0
    ground_distance: Optional[float] = 0.0
    collided: bool = False
    steering: float = 0.0
    throttle: float = 0.0
    brake: float = 0.0
    rays: List[RaySample] = field(default_factory=list)

    @property
    def speed_magnitude(self) -> float:
        return math.hypot(self.speed, self.lateral_speed)

    @property
    def wall_distances(self) -> List[float]:
        return [ray.distance for ray in self.rays if ray.category == RayCategory.WALL]


@runtime_checkable
class VehicleSimulator(Protocol):
    """One agent's contact point with vehicle physics."""

    def reset(self, pose: Pose) -> VehicleState:
        ...

    def step(self, action: Sequence[float], dt: float) -> VehicleState:
        ...

    @property
    def state(self) -> VehicleState:
        ...


def clip_action(action: Sequence[float]) -> np.ndarray:
    arr = np.asarray(action, dtype=np.float32).reshape(-1)
    if arr.shape[0] != ACTION_DIM:
        raise ValueError(f"expected an action of length {ACTION_DIM}, got {arr.shape[0]}")
    arr = np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)
    return np.clip(arr, ACTION_LOW, ACTION_HIGH)


@dataclass
class VehicleParams:
    max_speed: float = 30.0
    max_reverse_speed: float = 5.0
    max_accel: float = 12.0
    max_brake: float = 25.0
    max_steer_deg: float = 30.0
    wheelbase: float = 2.6
    drag: float = 0.05
    ray_angles_deg: List[float] = field(
        default_factory=lambda: [-110.0, -75.0, -45.0, -20.0, 0.0, 20.0, 45.0, 75.0, 110.0]
    )
    ray_range: float = 30.0
    distance_scale: float = 100.0

    @classmethod
    def from_config(cls, cfg) -> "VehicleParams":
        return cls(
            max_speed=cfg.max_speed,
            max_reverse_speed=cfg.max_reverse_speed,
            max_accel=cfg.max_accel,
            max_brake=cfg.max_brake,
            max_steer_deg=cfg.max_steer_deg,
            wheelbase=cfg.wheelbase,
            drag=cfg.drag,
            ray_angles_deg=list(cfg.ray_angles_deg),
            ray_range=cfg.ray_range,
            distance_scale=cfg.distance_scale,
        )


class KinematicVehicle:
    """Kinematic bicycle model confined between the track walls.

    Leaving the drivable band counts as a wall hit: the move is rejected, the
    car stops and ``collided`` is set for that tick.
    """

    def __init__(self, graph: CheckpointGraph, params: Optional[VehicleParams] = None) -> None:
        self.graph = graph
        self.params = params or VehicleParams()
        self._state = VehicleState(0.0, 0.0, 0.0)
        self._alive = True

    @property
    def state(self) -> VehicleState:
        return self._state

    def destroy(self) -> None:
        """Simulate the vehicle being removed out from under its agent."""

        self._alive = False

    def reset(self, pose: Pose) -> VehicleState:
        self._alive = True
        self._state = VehicleState(pose.x, pose.y, pose.heading)
        self._state.ground_distance = self._ground_distance(pose.x, pose.y)
        self._state.rays = self._cast_rays(pose.x, pose.y, pose.heading)
        return self._state

    def step(self, action: Sequence[float], dt: float) -> VehicleState:
        if not self._alive:
            raise TransientSimulationFault("vehicle handle no longer exists")
        steering, throttle, brake = (float(v) for v in clip_action(action))
        p = self.params
        prev = self._state

        speed = prev.speed + throttle * p.max_accel * dt
        if speed > 0.05:
            speed = max(speed - brake * p.max_brake * dt, 0.0)
        elif brake > 0.0 and throttle <= 0.0:
            # Holding the brake at a standstill engages reverse.
            speed -= brake * p.max_accel * 0.5 * dt
        speed -= p.drag * speed * dt
        speed = min(max(speed, -p.max_reverse_speed), p.max_speed)

        steer = steering * math.radians(p.max_steer_deg)
        heading = prev.heading + speed / p.wheelbase * math.tan(steer) * dt
        heading = wrap_to_pi(heading)
        x = prev.x + speed * math.cos(heading) * dt
        y = prev.y + speed * math.sin(heading) * dt

        collided = self.graph.lateral_offset((x, y)) > self.graph.half_width
        if collided:
            x, y, speed = prev.x, prev.y, 0.0

        state = VehicleState(
            x=x,
            y=y,
            heading=heading,
            speed=speed,
            tilt=0.0,
            ground_distance=self._ground_distance(x, y),
            collided=collided,
            steering=steering,
            throttle=throttle,
            brake=brake,
        )
        state.rays = self._cast_rays(x, y, heading)
        self._state = state
        return state

    def _ground_distance(self, x: float, y: float) -> Optional[float]:
        if self.graph.lateral_offset((x, y)) <= self.graph.half_width + _GROUND_MARGIN:
            return 0.0
        return None

    def _cast_rays(self, x: float, y: float, heading: float) -> List[RaySample]:
        rays: List[RaySample] = []
        reach = self.params.ray_range
        half_width = self.graph.half_width
        for angle_deg in self.params.ray_angles_deg:
            angle = heading + math.radians(angle_deg)
            dx, dy = math.cos(angle), math.sin(angle)
            wall = None
            for k in range(1, _RAY_SAMPLES + 1):
                d = reach * k / _RAY_SAMPLES
                if self.graph.lateral_offset((x + dx * d, y + dy * d)) > half_width:
                    wall = d
                    break
            limit = wall if wall is not None else reach
            gate = self.graph.first_gate_along((x, y), (x + dx * limit, y + dy * limit))
            if gate is not None and gate * limit < limit:
                rays.append(RaySample(gate * limit, RayCategory.CHECKPOINT))
            elif wall is not None:
                rays.append(RaySample(wall, RayCategory.WALL))
            else:
                rays.append(RaySample(reach, RayCategory.NONE))
        return rays


__all__ = [
    "ACTION_DIM",
    "ACTION_HIGH",
    "ACTION_LOW",
    "KinematicVehicle",
    "RayCategory",
    "RaySample",
    "VehicleParams",
    "VehicleSimulator",
    "VehicleState",
    "clip_action",
]
