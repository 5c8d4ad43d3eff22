"""Off-track and tilt detection."""
from __future__ import annotations

import math
from enum import Enum
from typing import Optional

from racega.envs.vehicle import VehicleState


class SafetyTrigger(str, Enum):
    OFF_TRACK = "off_track"
    TILTED = "tilted"


class OffTrackPolicy(str, Enum):
    RESPAWN = "respawn"
    TERMINATE = "terminate"


class SafetyMonitor:
    """Ground probe checked once per spawn plus a per-tick tilt limit."""

    def __init__(
        self,
        *,
        ground_check_delay: float = 0.5,
        ground_probe_distance: float = 1.0,
        max_tilt_deg: float = 60.0,
    ) -> None:
        self.ground_check_delay = max(float(ground_check_delay), 0.0)
        self.ground_probe_distance = float(ground_probe_distance)
        self.max_tilt = math.radians(float(max_tilt_deg))
        self._ground_check_at = 0.0
        self._ground_checked = True

    @classmethod
    def from_config(cls, cfg) -> "SafetyMonitor":
        return cls(
            ground_check_delay=cfg.ground_check_delay,
            ground_probe_distance=cfg.ground_probe_distance,
            max_tilt_deg=cfg.max_tilt_deg,
        )

    def arm(self, now: float) -> None:
        """Schedule the one-off ground probe after a spawn or respawn."""

        self._ground_check_at = now + self.ground_check_delay
        self._ground_checked = False

    def disarm(self) -> None:
        self._ground_checked = True

    def check(self, state: VehicleState, now: float) -> Optional[SafetyTrigger]:
        if abs(state.tilt) > self.max_tilt:
            self.disarm()
            return SafetyTrigger.TILTED
        if not self._ground_checked and now >= self._ground_check_at:
            self._ground_checked = True
            ground = state.ground_distance
            if ground is None or ground > self.ground_probe_distance:
                return SafetyTrigger.OFF_TRACK
        return None


__all__ = ["OffTrackPolicy", "SafetyMonitor", "SafetyTrigger"]
