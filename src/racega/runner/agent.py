"""One agent's episode: observe, act, step the vehicle, score, decide when it ends."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from racega.envs.observation import build_observation
from racega.envs.vehicle import VehicleParams, VehicleSimulator, VehicleState
from racega.errors import TransientSimulationFault
from racega.events import AgentRespawned, CheckpointPassed, EventBus, LapCompleted, WrongCheckpoint
from racega.policies.base import PolicyOptimizer
from racega.runner.results import EpisodeEndReason, EpisodeResult
from racega.scheduler import ScheduledTask, SimScheduler
from racega.tasks.progress import ProgressEvent, ProgressTracker
from racega.tasks.reward.base import RewardStep
from racega.tasks.reward.shaper import RewardShaper
from racega.tasks.safety import OffTrackPolicy, SafetyMonitor, SafetyTrigger
from racega.track.checkpoints import CheckpointGraph
from racega.utils.geometry import distance

logger = logging.getLogger(__name__)

# Spawn this far past the gate so the first tick cannot re-cross it.
SPAWN_ALONG_OFFSET = 1.0


@dataclass
class EpisodeSettings:
    max_episode_time: float = 120.0
    checkpoint_timeout: float = 30.0
    laps_per_episode: int = 1
    terminate_on_collision: bool = True
    max_consecutive_faults: int = 50
    off_track_policy: OffTrackPolicy = OffTrackPolicy.RESPAWN
    respawn_delay: float = 0.5
    respawn_penalty: float = 0.0

    @classmethod
    def from_config(cls, episode_cfg, safety_cfg) -> "EpisodeSettings":
        return cls(
            max_episode_time=episode_cfg.max_episode_time,
            checkpoint_timeout=episode_cfg.checkpoint_timeout,
            laps_per_episode=episode_cfg.laps_per_episode,
            terminate_on_collision=episode_cfg.terminate_on_collision,
            max_consecutive_faults=episode_cfg.max_consecutive_faults,
            off_track_policy=OffTrackPolicy(safety_cfg.off_track_policy),
            respawn_delay=safety_cfg.respawn_delay,
            respawn_penalty=safety_cfg.respawn_penalty,
        )


class AgentRuntime:
    """Drives a single agent through one episode.

    The runtime subscribes its reward shaper to the progress events of its own
    agent id; :meth:`close` drops those subscriptions and the progress state.
    """

    def __init__(
        self,
        agent_id: int,
        *,
        graph: CheckpointGraph,
        vehicle: VehicleSimulator,
        vehicle_params: VehicleParams,
        tracker: ProgressTracker,
        shaper: RewardShaper,
        safety: SafetyMonitor,
        policy: PolicyOptimizer,
        scheduler: SimScheduler,
        bus: EventBus,
        settings: Optional[EpisodeSettings] = None,
        run_laps: Optional[Callable[[], int]] = None,
    ) -> None:
        self.agent_id = int(agent_id)
        self.graph = graph
        self.vehicle = vehicle
        self.vehicle_params = vehicle_params
        self.tracker = tracker
        self.shaper = shaper
        self.safety = safety
        self.policy = policy
        self.scheduler = scheduler
        self.bus = bus
        self.settings = settings or EpisodeSettings()
        self.run_laps = run_laps or (lambda: 0)

        self.spawn_checkpoint = 0
        self.lane_offset = 0.0
        self.start_time = 0.0
        self.consecutive_faults = 0
        self.total_faults = 0
        self.respawns = 0
        self.result: Optional[EpisodeResult] = None
        self._position: Tuple[float, float] = (0.0, 0.0)
        self._respawn_task: Optional[ScheduledTask] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, spawn_checkpoint: int, lane_offset: float, now: float) -> VehicleState:
        self.spawn_checkpoint = self.graph.wrap(int(spawn_checkpoint))
        self.lane_offset = float(lane_offset)
        self.start_time = float(now)
        self.result = None
        self.consecutive_faults = 0

        pose = self.graph.spawn_pose(self.spawn_checkpoint, self.lane_offset, SPAWN_ALONG_OFFSET)
        state = self.vehicle.reset(pose)
        self._position = (state.x, state.y)

        owner = self.agent_id
        self.bus.subscribe(CheckpointPassed, self._on_checkpoint, owner=owner)
        self.bus.subscribe(LapCompleted, self._on_lap, owner=owner)
        self.bus.subscribe(WrongCheckpoint, self._on_wrong_checkpoint, owner=owner)

        self.shaper.reset()
        self.tracker.reset(self.agent_id, self.spawn_checkpoint, now)
        self.safety.arm(now)
        return state

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_respawn()
        self.bus.unsubscribe_owner(self.agent_id)
        self.tracker.remove(self.agent_id)

    def stop(self, now: float) -> EpisodeResult:
        """End the episode early; a finished episode keeps its result."""

        if self.result is None:
            self._finish(EpisodeEndReason.STOPPED, now)
        return self.result

    @property
    def finished(self) -> bool:
        return self.result is not None

    @property
    def respawn_pending(self) -> bool:
        return self._respawn_task is not None

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------
    def _on_checkpoint(self, event: CheckpointPassed) -> None:
        if event.agent_id == self.agent_id:
            self.shaper.on_checkpoint(event.index, self.graph.checkpoint_count())

    def _on_lap(self, event: LapCompleted) -> None:
        if event.agent_id == self.agent_id:
            self.shaper.on_lap()

    def _on_wrong_checkpoint(self, event: WrongCheckpoint) -> None:
        if event.agent_id == self.agent_id:
            self.shaper.on_wrong_checkpoint()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def step(self, now: float, dt: float) -> Optional[EpisodeResult]:
        """Advance one tick; returns the episode result once the episode ends."""

        if self.result is not None:
            return self.result

        if self._respawn_task is not None:
            # Parked until the scheduled respawn fires; only the clocks run.
            reason = self._time_limit_reason(now)
            return self._finish(reason, now) if reason is not None else None

        progress = self.tracker.state(self.agent_id)
        obs = build_observation(
            self.vehicle.state, self.graph, progress.expected_checkpoint, self.vehicle_params
        )
        action = self.policy.act(obs)
        try:
            state = self.vehicle.step(action, dt)
        except TransientSimulationFault as exc:
            self.consecutive_faults += 1
            self.total_faults += 1
            logger.warning(
                "Agent %s skipped a tick (%d consecutive faults): %s",
                self.agent_id,
                self.consecutive_faults,
                exc,
            )
            if self.consecutive_faults >= self.settings.max_consecutive_faults:
                return self._finish(EpisodeEndReason.FAULT, now)
            return None
        self.consecutive_faults = 0

        previous = self._position
        current = (state.x, state.y)
        moved = distance(previous, current)
        self._position = current
        self.tracker.add_distance(self.agent_id, moved)

        for index in self.graph.crossed_gates(previous, current):
            update = self.tracker.checkpoint_hit(self.agent_id, index, now)
            if update.event is ProgressEvent.WRONG:
                break

        if state.collided:
            self.shaper.on_collision()

        trigger = self.safety.check(state, now)
        if trigger is not None and self.settings.off_track_policy is OffTrackPolicy.RESPAWN:
            self._schedule_respawn(trigger, now)

        expected = progress.expected_checkpoint
        reward, _ = self.shaper.step(
            RewardStep(
                agent_id=self.agent_id,
                state=state,
                target_index=expected,
                target_position=self.graph.pose(expected).position,
                distance_delta=moved,
                current_time=now,
                timestep=dt,
                run_laps=self.run_laps(),
            )
        )

        reason = self._end_reason(state, trigger, now)
        if reason is EpisodeEndReason.OFF_TRACK:
            self.shaper.on_collision()
            extra, _ = self.shaper.step(None)
            reward += extra
        self.policy.observe(reward, reason is not None)
        if reason is not None:
            return self._finish(reason, now)
        return None

    def _end_reason(
        self,
        state: VehicleState,
        trigger: Optional[SafetyTrigger],
        now: float,
    ) -> Optional[EpisodeEndReason]:
        progress = self.tracker.state(self.agent_id)
        if progress.laps_completed >= self.settings.laps_per_episode:
            return EpisodeEndReason.LAPS_COMPLETE
        if progress.terminated:
            return EpisodeEndReason.WRONG_CHECKPOINT
        if state.collided and self.settings.terminate_on_collision:
            return EpisodeEndReason.COLLISION
        if trigger is not None and self.settings.off_track_policy is OffTrackPolicy.TERMINATE:
            return EpisodeEndReason.OFF_TRACK
        return self._time_limit_reason(now)

    def _time_limit_reason(self, now: float) -> Optional[EpisodeEndReason]:
        if now - self.start_time >= self.settings.max_episode_time:
            return EpisodeEndReason.TIMEOUT
        progress = self.tracker.state(self.agent_id)
        if now - progress.last_checkpoint_time >= self.settings.checkpoint_timeout:
            return EpisodeEndReason.STALLED
        return None

    # ------------------------------------------------------------------
    # Respawn
    # ------------------------------------------------------------------
    def _schedule_respawn(self, trigger: SafetyTrigger, now: float) -> None:
        if self._respawn_task is not None:
            return
        self.safety.disarm()
        self.shaper.on_respawn(self.settings.respawn_penalty)
        self._respawn_task = self.scheduler.call_at(
            now + self.settings.respawn_delay,
            lambda: self._respawn(trigger),
            name=f"respawn-{self.agent_id}",
        )

    def _respawn(self, trigger: SafetyTrigger) -> None:
        self._respawn_task = None
        if self.result is not None or self._closed:
            return
        now = self.scheduler.now
        checkpoint = self.tracker.respawn(self.agent_id, now)
        pose = self.graph.spawn_pose(checkpoint, self.lane_offset, SPAWN_ALONG_OFFSET)
        state = self.vehicle.reset(pose)
        self._position = (state.x, state.y)
        self.safety.arm(now)
        self.shaper.rebase()
        self.respawns += 1
        self.bus.publish(AgentRespawned(self.agent_id, checkpoint, trigger.value))
        logger.debug("Agent %s respawned at checkpoint %d (%s)", self.agent_id, checkpoint, trigger.value)

    def _cancel_respawn(self) -> None:
        if self._respawn_task is not None:
            self._respawn_task.cancel()
            self._respawn_task = None

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------
    def _finish(self, reason: EpisodeEndReason, now: float) -> EpisodeResult:
        self._cancel_respawn()
        progress = self.tracker.state(self.agent_id)
        progress.terminated = True
        self.result = EpisodeResult(
            agent_id=self.agent_id,
            reason=reason,
            checkpoints_passed=progress.checkpoints_passed,
            laps_completed=progress.laps_completed,
            distance=progress.total_distance,
            duration=max(now - self.start_time, 0.0),
            total_reward=self.shaper.episode_total,
            best_lap_time=progress.best_lap_time,
        )
        self.policy.end_episode()
        return self.result


__all__ = ["AgentRuntime", "EpisodeSettings", "SPAWN_ALONG_OFFSET"]
