"""Planar geometry helpers shared by the vehicle, observations and rewards."""

from __future__ import annotations

import math
from typing import Tuple


def wrap_to_pi(angle: float) -> float:
    """Wrap an angle in radians to the interval [-pi, pi]."""

    wrapped = (angle + math.pi) % (2.0 * math.pi) - math.pi
    if wrapped == -math.pi:
        return math.pi
    return wrapped


def heading_vector(theta: float) -> Tuple[float, float]:
    return math.cos(theta), math.sin(theta)


def distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def to_body_frame(vec_xy: Tuple[float, float], theta: float) -> Tuple[float, float]:
    """Rotate a world-frame vector into the frame of a body heading ``theta``."""

    cos_t = math.cos(theta)
    sin_t = math.sin(theta)
    vx, vy = vec_xy
    return vx * cos_t + vy * sin_t, -vx * sin_t + vy * cos_t


__all__ = ["distance", "heading_vector", "to_body_frame", "wrap_to_pi"]
