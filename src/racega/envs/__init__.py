"""Vehicle/observation boundary and the bundled kinematic simulator."""

from .observation import build_observation, observation_size
from .vehicle import (
    ACTION_DIM,
    ACTION_HIGH,
    ACTION_LOW,
    KinematicVehicle,
    RayCategory,
    RaySample,
    VehicleParams,
    VehicleSimulator,
    VehicleState,
    clip_action,
)

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
    "build_observation",
    "clip_action",
    "observation_size",
]
