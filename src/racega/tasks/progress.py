"""Per-agent checkpoint/lap state machine."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from racega.events import CheckpointPassed, EventBus, LapCompleted, LapStarted, WrongCheckpoint
from racega.track.checkpoints import CheckpointGraph

logger = logging.getLogger(__name__)


class ProgressEvent(str, Enum):
    IGNORED = "ignored"
    SUPPRESSED = "suppressed"
    CORRECT = "correct"
    LAP_STARTED = "lap_started"
    LAP_COMPLETED = "lap_completed"
    WRONG = "wrong"

    @property
    def passed(self) -> bool:
        """True when the hit advanced the agent to its next checkpoint."""

        return self in (ProgressEvent.CORRECT, ProgressEvent.LAP_STARTED, ProgressEvent.LAP_COMPLETED)


class OrderingPolicy(str, Enum):
    STRICT = "strict"
    LENIENT = "lenient"


@dataclass
class ProgressUpdate:
    event: ProgressEvent
    index: int
    expected: int
    lap_number: int = 0
    lap_time: Optional[float] = None


@dataclass
class AgentProgressState:
    agent_id: int
    spawn_checkpoint: int
    expected_checkpoint: int
    laps_completed: int = 0
    lap_started: bool = False
    lap_start_time: float = 0.0
    last_lap_time: Optional[float] = None
    best_lap_time: Optional[float] = None
    visited_since_lap_start: Set[int] = field(default_factory=set)
    total_distance_this_lap: float = 0.0
    total_distance: float = 0.0
    checkpoints_passed: int = 0
    grace_until: float = 0.0
    last_checkpoint_time: float = 0.0
    terminated: bool = False


class ProgressTracker:
    """Checkpoint ordering and lap accounting for every active agent.

    Each agent's lap is anchored on its own spawn checkpoint. Lap eligibility
    is strict: every checkpoint must have been passed, in order, since the
    lap started.
    """

    def __init__(
        self,
        graph: CheckpointGraph,
        bus: Optional[EventBus] = None,
        *,
        policy: OrderingPolicy | str = OrderingPolicy.STRICT,
        behind_tolerance: int = 2,
        grace_period: float = 0.2,
    ) -> None:
        self.graph = graph
        self.bus = bus
        self.policy = OrderingPolicy(policy)
        self.behind_tolerance = max(int(behind_tolerance), 0)
        self.grace_period = max(float(grace_period), 0.0)
        self._states: Dict[int, AgentProgressState] = {}

    @classmethod
    def from_config(cls, graph: CheckpointGraph, cfg, bus: Optional[EventBus] = None) -> "ProgressTracker":
        return cls(
            graph,
            bus,
            policy=cfg.policy,
            behind_tolerance=cfg.behind_tolerance,
            grace_period=cfg.grace_period,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def reset(
        self,
        agent_id: int,
        spawn_checkpoint: int,
        now: float,
        *,
        before_gate: bool = False,
    ) -> AgentProgressState:
        """Start a fresh episode for ``agent_id`` at ``spawn_checkpoint``.

        With ``before_gate`` the agent sits behind its spawn gate and the lap
        starts when it first crosses it; otherwise it sits just past the gate
        and the lap starts immediately.
        """

        anchor = self.graph.checkpoint(spawn_checkpoint).index
        state = AgentProgressState(
            agent_id=agent_id,
            spawn_checkpoint=anchor,
            expected_checkpoint=anchor if before_gate else self.graph.next_index(anchor),
            grace_until=now + self.grace_period,
            last_checkpoint_time=now,
        )
        self._states[agent_id] = state
        if not before_gate:
            self._start_lap(state, now)
        return state

    def respawn(self, agent_id: int, now: float) -> int:
        """Re-target the agent after it was placed back at its last passed checkpoint.

        Lap timer and counters are kept. Returns the checkpoint index the
        agent should be placed at (just past its gate).
        """

        state = self._states[agent_id]
        if state.lap_started:
            checkpoint = self.graph.previous_index(state.expected_checkpoint)
        else:
            checkpoint = state.spawn_checkpoint
            self._start_lap(state, now)
        state.expected_checkpoint = self.graph.next_index(checkpoint)
        state.grace_until = now + self.grace_period
        return checkpoint

    def remove(self, agent_id: int) -> Optional[AgentProgressState]:
        return self._states.pop(agent_id, None)

    def state(self, agent_id: int) -> AgentProgressState:
        return self._states[agent_id]

    def has_agent(self, agent_id: int) -> bool:
        return agent_id in self._states

    def add_distance(self, agent_id: int, distance: float) -> None:
        if not math.isfinite(distance) or distance <= 0.0:
            return
        state = self._states[agent_id]
        state.total_distance += distance
        if state.lap_started:
            state.total_distance_this_lap += distance

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def checkpoint_hit(self, agent_id: int, index: int, now: float) -> ProgressUpdate:
        state = self._states[agent_id]
        expected = state.expected_checkpoint
        if state.terminated:
            return ProgressUpdate(ProgressEvent.IGNORED, index, expected)
        if self.graph.try_checkpoint(index) is None:
            logger.warning("Agent %s reported unknown checkpoint %s", agent_id, index)
            return ProgressUpdate(ProgressEvent.IGNORED, index, expected)
        if now < state.grace_until:
            return ProgressUpdate(ProgressEvent.SUPPRESSED, index, expected)

        if index != expected:
            return self._out_of_order(state, index, now)

        state.expected_checkpoint = self.graph.next_index(index)
        state.checkpoints_passed += 1
        state.last_checkpoint_time = now
        self._publish(CheckpointPassed(agent_id, index, now))

        if index != state.spawn_checkpoint:
            state.visited_since_lap_start.add(index)
            return ProgressUpdate(ProgressEvent.CORRECT, index, expected, state.laps_completed + 1)

        if not state.lap_started:
            self._start_lap(state, now)
            return ProgressUpdate(ProgressEvent.LAP_STARTED, index, expected, 1)

        if len(state.visited_since_lap_start) < self.graph.checkpoint_count():
            # Cannot happen with in-order acceptance; restart the lap rather than award it.
            logger.warning("Agent %s reached its lap anchor without a full ring", agent_id)
            self._start_lap(state, now)
            return ProgressUpdate(ProgressEvent.CORRECT, index, expected, state.laps_completed + 1)

        lap_time = max(now - state.lap_start_time, 0.0)
        distance = state.total_distance_this_lap
        state.laps_completed += 1
        state.last_lap_time = lap_time
        if state.best_lap_time is None or lap_time < state.best_lap_time:
            state.best_lap_time = lap_time
        avg_speed = distance / lap_time if lap_time > 0.0 else 0.0
        self._publish(LapCompleted(agent_id, state.laps_completed, lap_time, avg_speed, distance))
        self._start_lap(state, now)
        return ProgressUpdate(ProgressEvent.LAP_COMPLETED, index, expected, state.laps_completed, lap_time)

    def _out_of_order(self, state: AgentProgressState, index: int, now: float) -> ProgressUpdate:
        expected = state.expected_checkpoint
        if self.policy is OrderingPolicy.LENIENT:
            count = self.graph.checkpoint_count()
            behind = (expected - index) % count
            if behind > count // 2 or behind <= self.behind_tolerance:
                return ProgressUpdate(ProgressEvent.IGNORED, index, expected)

        state.terminated = True
        self._publish(WrongCheckpoint(state.agent_id, index, expected))
        return ProgressUpdate(ProgressEvent.WRONG, index, expected, state.laps_completed + 1)

    def _start_lap(self, state: AgentProgressState, now: float) -> None:
        state.lap_started = True
        state.lap_start_time = now
        state.visited_since_lap_start = {state.spawn_checkpoint}
        state.total_distance_this_lap = 0.0
        self._publish(LapStarted(state.agent_id, state.laps_completed + 1, now))

    def _publish(self, event) -> None:
        if self.bus is not None:
            self.bus.publish(event)


__all__ = [
    "AgentProgressState",
    "OrderingPolicy",
    "ProgressEvent",
    "ProgressTracker",
    "ProgressUpdate",
]
