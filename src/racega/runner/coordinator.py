"""Episode coordinator: waves of concurrent agents behind a barrier.

A generation runs ``episodes_per_generation`` episodes. Each episode runs
every genome once, in waves of at most ``max_simultaneous_agents``. When the
last agent of a wave reports completion, exactly one advance is queued on the
simulated-time scheduler and runs at the end of the tick.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from racega.errors import InvariantViolation
from racega.events import EpisodeEnded, EventBus, GenerationEvolved
from racega.genetic.fitness import FitnessEvaluator
from racega.genetic.genome import Genome
from racega.genetic.population import GenerationSummary, PopulationManager
from racega.runner.results import EpisodeResult
from racega.scheduler import ScheduledTask, SimScheduler

logger = logging.getLogger(__name__)

SpawnFn = Callable[[Genome, int, float], Any]
ReleaseAgentFn = Callable[[Any], None]
GenerationHook = Callable[[GenerationSummary], None]


class AdvanceState(Enum):
    IDLE = "idle"
    ADVANCING = "advancing"


def spawn_layout(
    slot_count: int,
    checkpoint_count: int,
    lane_spacing: float,
    lanes: int = 3,
) -> List[Tuple[int, float]]:
    """Spawn checkpoint and lane offset for each slot of a wave.

    Slots are spread evenly around the ring and cycle through ``lanes`` lanes
    centred on the racing line, so agents sharing a checkpoint region never
    start on top of each other.
    """

    lanes = max(int(lanes), 1)
    centre = (lanes - 1) / 2.0
    layout = []
    for slot in range(slot_count):
        checkpoint = (slot * checkpoint_count // slot_count) % checkpoint_count
        lane = ((slot % lanes) - centre) * lane_spacing
        layout.append((checkpoint, lane))
    return layout


class EpisodeCoordinator:
    def __init__(
        self,
        population: PopulationManager,
        evaluator: FitnessEvaluator,
        scheduler: SimScheduler,
        *,
        spawn_agent: SpawnFn,
        release_agent: Optional[ReleaseAgentFn] = None,
        checkpoint_count: int,
        max_simultaneous_agents: int = 5,
        episodes_per_generation: int = 5,
        max_generations: Optional[int] = None,
        lane_spacing: float = 2.0,
        spawn_lanes: int = 3,
        bus: Optional[EventBus] = None,
        on_generation: Optional[GenerationHook] = None,
    ) -> None:
        if max_simultaneous_agents < 1:
            raise ValueError(f"max_simultaneous_agents must be at least 1, got {max_simultaneous_agents}")
        if episodes_per_generation < 1:
            raise ValueError(f"episodes_per_generation must be at least 1, got {episodes_per_generation}")
        self.population = population
        self.evaluator = evaluator
        self.scheduler = scheduler
        self.spawn_agent = spawn_agent
        self.release_agent = release_agent or (lambda runtime: None)
        self.checkpoint_count = int(checkpoint_count)
        self.max_simultaneous_agents = int(max_simultaneous_agents)
        self.episodes_per_generation = int(episodes_per_generation)
        self.max_generations = max_generations
        self.lane_spacing = float(lane_spacing)
        self.spawn_lanes = int(spawn_lanes)
        self.bus = bus
        self.on_generation = on_generation

        self._lock = threading.Lock()
        self._state = AdvanceState.IDLE
        self._active: Dict[int, Any] = {}
        self._pending_advance: Optional[ScheduledTask] = None
        self._stop_requested = False
        self._started = False

        self.episode = 1
        self.wave = 0
        self.completed_generations = 0
        self.advances = 0
        self.finished = False

    @classmethod
    def from_config(
        cls,
        cfg,
        population: PopulationManager,
        evaluator: FitnessEvaluator,
        scheduler: SimScheduler,
        *,
        spawn_agent: SpawnFn,
        release_agent: Optional[ReleaseAgentFn] = None,
        checkpoint_count: int,
        bus: Optional[EventBus] = None,
        on_generation: Optional[GenerationHook] = None,
    ) -> "EpisodeCoordinator":
        return cls(
            population,
            evaluator,
            scheduler,
            spawn_agent=spawn_agent,
            release_agent=release_agent,
            checkpoint_count=checkpoint_count,
            max_simultaneous_agents=cfg.coordinator.max_simultaneous_agents,
            episodes_per_generation=cfg.genetic.episodes_per_generation,
            max_generations=cfg.genetic.max_generations,
            lane_spacing=cfg.coordinator.lane_spacing,
            spawn_lanes=cfg.coordinator.spawn_lanes,
            bus=bus,
            on_generation=on_generation,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        return self.population.generation

    @property
    def state(self) -> AdvanceState:
        return self._state

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def active_indices(self) -> List[int]:
        with self._lock:
            return sorted(self._active)

    def active_items(self) -> List[Tuple[int, Any]]:
        """Snapshot of ``(genome index, runtime)`` pairs safe to iterate while agents complete."""

        with self._lock:
            return sorted(self._active.items(), key=lambda item: item[0])

    def waves(self) -> List[List[int]]:
        size = len(self.population.population)
        step = self.max_simultaneous_agents
        return [list(range(start, min(start + step, size))) for start in range(0, size, step)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> List[int]:
        """Activate the first wave of the first episode."""

        with self._lock:
            if self._started:
                raise InvariantViolation("coordinator already started")
            if not self.population.population:
                self.population.initialize_population()
            self._started = True
            self.episode = 1
            self.wave = 0
            return self._activate_wave()

    def notify_complete(self, index: int, result: EpisodeResult) -> Optional[float]:
        """Record a finished agent; returns its episode fitness, or ``None`` if ignored."""

        with self._lock:
            if self._state is AdvanceState.ADVANCING:
                logger.debug("Ignoring completion of genome %d while advancing", index)
                return None
            runtime = self._active.pop(index, None)
            if runtime is None:
                logger.debug("Ignoring completion of inactive genome %d", index)
                return None

            genome = self.population.population[index]
            fitness = self.evaluator.evaluate(genome, result, self.episode)
            if self.bus is not None:
                self.bus.publish(
                    EpisodeEnded(genome.agent_id, result.reason.value, fitness, self.episode, self.generation)
                )
            self.release_agent(runtime)

            if not self._active and self._compare_and_set(AdvanceState.IDLE, AdvanceState.ADVANCING):
                self._pending_advance = self.scheduler.call_soon(self.advance, name="advance")
            return fitness

    def advance(self) -> Optional[GenerationSummary]:
        """Move past the barrier: next wave, next episode or next generation.

        Returns the generation summary when the population evolved.
        """

        with self._lock:
            if self._state is not AdvanceState.ADVANCING:
                return None
            self._pending_advance = None
            try:
                summary = self._advance_locked()
            finally:
                self._compare_and_set(AdvanceState.ADVANCING, AdvanceState.IDLE)

        if summary is not None and self.on_generation is not None:
            self.on_generation(summary)
        return summary

    def _advance_locked(self) -> Optional[GenerationSummary]:
        self.advances += 1
        if self._stop_requested:
            self.finished = True
            return None

        self.wave += 1
        if self.wave < len(self.waves()):
            self._activate_wave()
            return None

        self.wave = 0
        self.episode += 1
        if self.episode <= self.episodes_per_generation:
            self._activate_wave()
            return None

        summary = self.population.evolve()
        self.completed_generations += 1
        if self.bus is not None:
            self.bus.publish(GenerationEvolved(summary.generation, summary.to_dict()))

        self.episode = 1
        if self.max_generations is not None and self.completed_generations >= self.max_generations:
            self.finished = True
            return summary
        self._activate_wave()
        return summary

    def request_stop(self) -> None:
        """Activate no further waves; running agents finish their episodes."""

        with self._lock:
            self._stop_requested = True

    def shutdown(self) -> None:
        """Stop, settle any queued advance and release every running agent."""

        with self._lock:
            self._stop_requested = True
            if self._state is AdvanceState.ADVANCING:
                # Queued but not yet run: settle it here so nothing is left half-applied.
                if self._pending_advance is not None:
                    self._pending_advance.cancel()
                    self._pending_advance = None
                self._advance_locked()
                self._compare_and_set(AdvanceState.ADVANCING, AdvanceState.IDLE)
            for runtime in self._active.values():
                self.release_agent(runtime)
            self._active.clear()
            self.finished = True

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------
    def _compare_and_set(self, expected: AdvanceState, new: AdvanceState) -> bool:
        if self._state is not expected:
            return False
        self._state = new
        return True

    def _activate_wave(self) -> List[int]:
        indices = self.waves()[self.wave]
        layout = spawn_layout(len(indices), self.checkpoint_count, self.lane_spacing, self.spawn_lanes)
        for index, (checkpoint, lane) in zip(indices, layout):
            if index in self._active:
                raise InvariantViolation(f"genome {index} is already active")
            genome = self.population.population[index]
            genome.mark_started(self.scheduler.now)
            self._active[index] = self.spawn_agent(genome, checkpoint, lane)
        if len(self._active) > self.max_simultaneous_agents:
            raise InvariantViolation(
                f"{len(self._active)} active agents exceed the cap of {self.max_simultaneous_agents}"
            )
        logger.debug(
            "Generation %d episode %d wave %d: activated genomes %s",
            self.generation,
            self.episode,
            self.wave,
            indices,
        )
        return list(indices)


__all__ = ["AdvanceState", "EpisodeCoordinator", "spawn_layout"]
