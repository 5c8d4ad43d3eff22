"""Ordered ring of checkpoint gates around a closed track."""
from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit

from racega.errors import ConfigurationError, OutOfRangeError


@dataclass(frozen=True)
class Pose:
    x: float
    y: float
    heading: float

    @property
    def position(self) -> Tuple[float, float]:
        return self.x, self.y

    @property
    def forward(self) -> Tuple[float, float]:
        return math.cos(self.heading), math.sin(self.heading)

    @property
    def left(self) -> Tuple[float, float]:
        return -math.sin(self.heading), math.cos(self.heading)


@dataclass(frozen=True)
class Checkpoint:
    index: int
    pose: Pose
    half_width: float

    @property
    def gate(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """End points of the gate segment, perpendicular to the driving direction."""

        lx, ly = self.pose.left
        x, y = self.pose.position
        w = self.half_width
        return (x - lx * w, y - ly * w), (x + lx * w, y + ly * w)


@njit(cache=True)
def _gate_hits(gates: np.ndarray, p0x: float, p0y: float, p1x: float, p1y: float) -> np.ndarray:
    """Fraction along the motion segment where each gate is crossed, or -1.

    Args:
        gates: Gate segments as rows of (ax, ay, bx, by)
        p0x, p0y: Motion segment start
        p1x, p1y: Motion segment end

    Returns:
        Array (N,) of t in [0, 1] for crossed gates, -1 elsewhere
    """
    n = gates.shape[0]
    out = np.full(n, -1.0)
    rx = p1x - p0x
    ry = p1y - p0y
    for i in range(n):
        ax = gates[i, 0]
        ay = gates[i, 1]
        sx = gates[i, 2] - ax
        sy = gates[i, 3] - ay
        denom = rx * sy - ry * sx
        if abs(denom) < 1e-12:
            continue
        qx = ax - p0x
        qy = ay - p0y
        t = (qx * sy - qy * sx) / denom
        u = (qx * ry - qy * rx) / denom
        if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
            out[i] = t
    return out


@njit(cache=True)
def _ring_distance(points: np.ndarray, px: float, py: float) -> float:
    """Shortest distance from (px, py) to the closed polyline through ``points``."""
    n = points.shape[0]
    best = 1e18
    for i in range(n):
        ax = points[i, 0]
        ay = points[i, 1]
        bx = points[(i + 1) % n, 0]
        by = points[(i + 1) % n, 1]
        dx = bx - ax
        dy = by - ay
        length_sq = dx * dx + dy * dy
        if length_sq < 1e-12:
            t = 0.0
        else:
            t = ((px - ax) * dx + (py - ay) * dy) / length_sq
            if t < 0.0:
                t = 0.0
            elif t > 1.0:
                t = 1.0
        cx = ax + t * dx - px
        cy = ay + t * dy - py
        dist_sq = cx * cx + cy * cy
        if dist_sq < best:
            best = dist_sq
    return math.sqrt(best)


class CheckpointGraph:
    """Read-only cyclic sequence of checkpoints; index 0 is the start/finish line."""

    def __init__(self, checkpoints: Sequence[Checkpoint], track_width: float) -> None:
        if not checkpoints:
            raise ConfigurationError("A checkpoint graph needs at least one checkpoint")
        if track_width <= 0.0:
            raise ConfigurationError(f"track_width must be positive, got {track_width}")
        for expected, checkpoint in enumerate(checkpoints):
            if checkpoint.index != expected:
                raise ConfigurationError(
                    f"checkpoint at position {expected} carries index {checkpoint.index}"
                )
        self._checkpoints: Tuple[Checkpoint, ...] = tuple(checkpoints)
        self.track_width = float(track_width)
        self._centreline = np.asarray(
            [cp.pose.position for cp in self._checkpoints], dtype=np.float64
        )
        self._gates = np.asarray(
            [(*cp.gate[0], *cp.gate[1]) for cp in self._checkpoints], dtype=np.float64
        )
        self._centreline.setflags(write=False)
        self._gates.setflags(write=False)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------
    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]], track_width: float) -> "CheckpointGraph":
        coords = np.asarray(list(points), dtype=np.float64)
        if coords.ndim != 2 or coords.shape[0] < 3 or coords.shape[1] < 2:
            raise ConfigurationError("A closed track needs at least three (x, y) points")
        coords = coords[:, :2]
        n = coords.shape[0]
        half_width = 0.5 * float(track_width)
        checkpoints: List[Checkpoint] = []
        for i in range(n):
            prev_pt = coords[(i - 1) % n]
            next_pt = coords[(i + 1) % n]
            heading = math.atan2(next_pt[1] - prev_pt[1], next_pt[0] - prev_pt[0])
            pose = Pose(float(coords[i, 0]), float(coords[i, 1]), heading)
            checkpoints.append(Checkpoint(index=i, pose=pose, half_width=half_width))
        return cls(checkpoints, track_width)

    @classmethod
    def ellipse(
        cls,
        semi_major: float,
        semi_minor: float,
        count: int,
        track_width: float,
    ) -> "CheckpointGraph":
        """Counter-clockwise elliptical ring with checkpoint 0 on the +x axis."""

        if count < 3:
            raise ConfigurationError(f"an elliptical track needs at least 3 checkpoints, got {count}")
        theta = np.linspace(0.0, 2.0 * math.pi, int(count), endpoint=False)
        points = np.stack([semi_major * np.cos(theta), semi_minor * np.sin(theta)], axis=1)
        return cls.from_points(points, track_width)

    @classmethod
    def from_csv(cls, path: Path | str, track_width: float) -> "CheckpointGraph":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Checkpoint file not found: {path}")

        def _read(skip_header: int) -> np.ndarray:
            return np.genfromtxt(
                path,
                delimiter=",",
                comments="#",
                skip_header=skip_header,
                usecols=(0, 1),
                dtype=np.float64,
            )

        data = _read(0)
        if data.ndim == 2 and data.shape[0] and np.isnan(data[0]).any():
            data = _read(1)
        if data.ndim == 1:
            data = data.reshape(1, -1)
        data = data[~np.isnan(data).any(axis=1)]
        return cls.from_points(data, track_width)

    @classmethod
    def from_config(cls, cfg, *, root: Optional[Path] = None) -> "CheckpointGraph":
        if cfg.csv:
            csv_path = Path(cfg.csv).expanduser()
            if not csv_path.is_absolute() and root is not None:
                csv_path = root / csv_path
            return cls.from_csv(csv_path, cfg.track_width)
        return cls.ellipse(cfg.semi_major, cfg.semi_minor, cfg.checkpoint_count, cfg.track_width)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def checkpoint_count(self) -> int:
        return len(self._checkpoints)

    def __len__(self) -> int:
        return len(self._checkpoints)

    def checkpoint(self, index: int) -> Checkpoint:
        if not 0 <= index < len(self._checkpoints):
            raise OutOfRangeError(
                f"checkpoint index {index} outside [0, {len(self._checkpoints)})"
            )
        return self._checkpoints[index]

    def try_checkpoint(self, index: int) -> Optional[Checkpoint]:
        if 0 <= index < len(self._checkpoints):
            return self._checkpoints[index]
        return None

    def pose(self, index: int) -> Pose:
        return self.checkpoint(index).pose

    def wrap(self, index: int) -> int:
        return index % len(self._checkpoints)

    def next_index(self, index: int) -> int:
        return (index + 1) % len(self._checkpoints)

    def previous_index(self, index: int) -> int:
        return (index - 1) % len(self._checkpoints)

    @property
    def start_finish(self) -> Checkpoint:
        return self._checkpoints[0]

    @property
    def half_width(self) -> float:
        return 0.5 * self.track_width

    def spawn_pose(self, index: int, lane_offset: float = 0.0, along_offset: float = 0.0) -> Pose:
        """Pose displaced ``along_offset`` forward and ``lane_offset`` to the left of a checkpoint."""

        pose = self.pose(index)
        fx, fy = pose.forward
        lx, ly = pose.left
        return Pose(
            pose.x + fx * along_offset + lx * lane_offset,
            pose.y + fy * along_offset + ly * lane_offset,
            pose.heading,
        )

    # ------------------------------------------------------------------
    # Geometry queries
    # ------------------------------------------------------------------
    def crossed_gates(self, start: Sequence[float], end: Sequence[float]) -> List[int]:
        """Indices of gates crossed moving from ``start`` to ``end``, in crossing order."""

        hits = _gate_hits(self._gates, float(start[0]), float(start[1]), float(end[0]), float(end[1]))
        crossed = np.flatnonzero(hits >= 0.0)
        if crossed.size == 0:
            return []
        order = np.argsort(hits[crossed], kind="stable")
        return [int(i) for i in crossed[order]]

    def first_gate_along(self, start: Sequence[float], end: Sequence[float]) -> Optional[float]:
        """Fraction along the segment where the first gate is hit, if any."""

        hits = _gate_hits(self._gates, float(start[0]), float(start[1]), float(end[0]), float(end[1]))
        valid = hits[hits >= 0.0]
        if valid.size == 0:
            return None
        return float(valid.min())

    def lateral_offset(self, point: Sequence[float]) -> float:
        """Distance from ``point`` to the closed centreline through all checkpoints."""

        return float(_ring_distance(self._centreline, float(point[0]), float(point[1])))


__all__ = ["Checkpoint", "CheckpointGraph", "Pose"]
