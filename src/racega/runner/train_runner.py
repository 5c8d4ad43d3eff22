"""Tick loop wiring the track, population, coordinator and agent runtimes together."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from racega.envs.observation import observation_size
from racega.envs.vehicle import ACTION_DIM, ACTION_HIGH, ACTION_LOW, KinematicVehicle, VehicleParams
from racega.events import EventBus
from racega.genetic.fitness import FitnessEvaluator
from racega.genetic.genome import Genome
from racega.genetic.population import GenerationSummary, PopulationManager, exploration_rate
from racega.loggers.records import TrainingRecordWriter
from racega.metrics.tracker import EpisodeMetrics, MetricsTracker
from racega.policies import PolicyFactory, PolicySpec
from racega.policies.base import PolicyOptimizer
from racega.runner.agent import AgentRuntime, EpisodeSettings
from racega.runner.coordinator import EpisodeCoordinator
from racega.scheduler import SimScheduler
from racega.tasks.progress import ProgressTracker
from racega.tasks.reward.shaper import RewardShaper
from racega.tasks.safety import SafetyMonitor
from racega.track.checkpoints import CheckpointGraph
from racega.utils.config import TrainingConfig
from racega.utils.logger import NULL_LOGGER, Logger

logger = logging.getLogger(__name__)


def default_run_dir(cfg: TrainingConfig) -> Path:
    name = cfg.logging.run_name or datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path(cfg.logging.output_dir).expanduser() / name


class TrainingRunner:
    """Owns one training run from the first wave to the final summary.

    Example:
        >>> cfg, _ = load_config("configs/genetic_ppo.yaml")
        >>> runner = TrainingRunner(cfg, run_logger=build_logger(cfg.logging))
        >>> summary = runner.run(max_ticks=50_000)
    """

    def __init__(
        self,
        cfg: TrainingConfig,
        *,
        run_logger: Logger = NULL_LOGGER,
        records: Optional[TrainingRecordWriter] = None,
        output_dir: Optional[Path | str] = None,
        config_root: Optional[Path] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.cfg = cfg
        self.run_logger = run_logger
        self.output_dir = Path(output_dir) if output_dir is not None else default_run_dir(cfg)
        self.records = records or TrainingRecordWriter(self.output_dir, enabled=cfg.logging.records)
        self.rng = rng if rng is not None else np.random.default_rng(cfg.genetic.seed)

        self.dt = float(cfg.episode.timestep)
        self.now = 0.0
        self.ticks = 0
        self._stop_requested = False

        self.bus = EventBus()
        self.scheduler = SimScheduler(start_time=self.now)
        self.graph = CheckpointGraph.from_config(cfg.track, root=config_root)
        self.vehicle_params = VehicleParams.from_config(cfg.vehicle)
        self.tracker = ProgressTracker.from_config(self.graph, cfg.progress, self.bus)
        self.settings = EpisodeSettings.from_config(cfg.episode, cfg.safety)
        self.metrics = MetricsTracker()
        self.metrics.attach(self.bus)
        self.records.attach(self.bus)

        self.policy_spec = PolicySpec(
            obs_dim=observation_size(self.vehicle_params),
            act_dim=ACTION_DIM,
            action_low=ACTION_LOW.tolist(),
            action_high=ACTION_HIGH.tolist(),
            max_speed=self.vehicle_params.max_speed,
            settings=cfg.policy.to_dict(),
        )

        self.evaluator = FitnessEvaluator.from_config(cfg.fitness)
        self.population = PopulationManager.from_config(
            cfg.genetic,
            base_hyperparameters=cfg.default_hyperparameters(),
            rng=self.rng,
        )
        self.coordinator = EpisodeCoordinator.from_config(
            cfg,
            self.population,
            self.evaluator,
            self.scheduler,
            spawn_agent=self._spawn_agent,
            release_agent=self._release_agent,
            checkpoint_count=self.graph.checkpoint_count(),
            bus=self.bus,
            on_generation=self._on_generation,
        )
        self._snapshot_task = None

    # ------------------------------------------------------------------
    # Agent lifecycle hooks
    # ------------------------------------------------------------------
    def _ensure_policy(self, genome: Genome) -> PolicyOptimizer:
        if genome.policy is None:
            genome.policy = PolicyFactory.create(self.cfg.policy.name, genome.hyperparameters, self.policy_spec)
        return genome.policy

    def _spawn_agent(self, genome: Genome, spawn_checkpoint: int, lane_offset: float) -> AgentRuntime:
        policy = self._ensure_policy(genome)
        policy.set_exploration(exploration_rate(self.population.generation))
        runtime = AgentRuntime(
            genome.agent_id,
            graph=self.graph,
            vehicle=KinematicVehicle(self.graph, self.vehicle_params),
            vehicle_params=self.vehicle_params,
            tracker=self.tracker,
            shaper=RewardShaper.from_config(self.cfg.reward),
            safety=SafetyMonitor.from_config(self.cfg.safety),
            policy=policy,
            scheduler=self.scheduler,
            bus=self.bus,
            settings=self.settings,
            run_laps=lambda: self.metrics.total_laps,
        )
        runtime.start(spawn_checkpoint, lane_offset, self.now)
        return runtime

    def _release_agent(self, runtime: AgentRuntime) -> None:
        if not runtime.finished:
            result = runtime.stop(self.now)
            logger.debug("Agent %s stopped after %.2fs", result.agent_id, result.duration)
        runtime.close()

    # ------------------------------------------------------------------
    # Generation bookkeeping
    # ------------------------------------------------------------------
    def _on_generation(self, summary: GenerationSummary) -> None:
        self.metrics.add_generation(summary)
        self.records.write_generation(summary)
        logging_cfg = self.cfg.logging
        if summary.generation % logging_cfg.best_snapshot_every == 0:
            self.records.write_best_params(summary)
        if summary.generation % logging_cfg.model_save_every == 0:
            self._save_elite_models(summary.generation)

        payload = {f"generation/{key}": value for key, value in summary.to_dict().items() if key != "best_hyperparameters"}
        self.run_logger.log_metrics("generation", payload, step=summary.generation)

    def _save_elite_models(self, generation: int) -> int:
        saved = 0
        if not self.cfg.logging.records:
            return saved
        model_dir = self.output_dir / "models"
        for genome in self.population.population[: self.population.elite_count]:
            save = getattr(genome.policy, "save", None)
            if not callable(save):
                continue
            path = model_dir / f"gen{generation}_agent{genome.agent_id}.pt"
            save(str(path))
            saved += 1
        if saved:
            logger.info("Saved %d elite policies for generation %d", saved, generation)
        return saved

    def _snapshot(self) -> None:
        self.records.write_population_snapshot(
            self.population.population,
            generation=self.population.generation,
            episode=self.coordinator.episode,
            time=self.now,
        )
        stats = self.metrics.get_rolling_stats(window=len(self.population.population))
        stats.pop("end_reasons", None)
        best = self.population.best_genome()
        stats.update(
            {
                "generation": self.population.generation,
                "episode": self.coordinator.episode,
                "sim_time": self.now,
                "active_agents": len(self.coordinator.active_indices()),
                "best_fitness": best.fitness if best is not None else 0.0,
            }
        )
        self.run_logger.log_metrics("snapshot", stats, step=self.ticks)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    def request_stop(self) -> None:
        self._stop_requested = True
        self.coordinator.request_stop()

    def tick(self) -> int:
        """Step every active agent once, then run the scheduler. Returns completions."""

        self.now += self.dt
        self.ticks += 1
        completed = 0
        for index, runtime in self.coordinator.active_items():
            result = runtime.step(self.now, self.dt)
            if result is None:
                continue
            fitness = self.coordinator.notify_complete(index, result)
            if fitness is None:
                continue
            completed += 1
            self.metrics.add_episode(
                EpisodeMetrics(
                    generation=self.population.generation,
                    episode=self.coordinator.episode,
                    agent_id=result.agent_id,
                    reason=result.reason.value,
                    fitness=fitness,
                    total_reward=result.total_reward,
                    checkpoints=result.checkpoints_passed,
                    laps=result.laps_completed,
                    distance=result.distance,
                    duration=result.duration,
                )
            )
        self.scheduler.run_due(self.now)
        return completed

    def run(self, max_ticks: Optional[int] = None) -> Dict[str, Any]:
        self.records.save_config_snapshot(self.cfg.to_dict())
        self.run_logger.start(
            {
                "policy": self.cfg.policy.name,
                "population": self.population.population_size,
                "generations": self.cfg.genetic.max_generations,
                "output_dir": str(self.output_dir),
            }
        )
        self.coordinator.start()
        self._snapshot_task = self.scheduler.call_every(
            self.cfg.logging.snapshot_interval, self._snapshot, name="snapshot"
        )
        self.run_logger.info(
            "Training started",
            extra={"checkpoints": self.graph.checkpoint_count(), "waves": len(self.coordinator.waves())},
        )
        try:
            while not self.coordinator.finished:
                if self._stop_requested and not self.coordinator.active_indices():
                    break
                if max_ticks is not None and self.ticks >= max_ticks:
                    self.run_logger.warning("Tick budget exhausted", extra={"ticks": self.ticks})
                    break
                self.tick()
        except KeyboardInterrupt:
            self.run_logger.warning("Interrupted; shutting down")
        finally:
            summary = self._finish()
        return summary

    def _finish(self) -> Dict[str, Any]:
        self.coordinator.shutdown()
        if self._snapshot_task is not None:
            self._snapshot_task.cancel()
        best = self.population.best_genome()
        best_lap = self.metrics.best_lap()
        summary: Dict[str, Any] = {
            "generations_completed": self.coordinator.completed_generations,
            "ticks": self.ticks,
            "sim_time": self.now,
            "total_laps": self.metrics.total_laps,
            "episodes": len(self.metrics.episodes),
            "best_lap": best_lap.to_dict() if best_lap is not None else None,
            "best_genome": best.to_dict() if best is not None else None,
            "history": [gen.to_dict() for gen in self.metrics.generations],
        }
        self.records.save_summary(summary)
        self.records.close()
        self.metrics.detach()
        self.run_logger.info(
            "Training finished",
            extra={"generations": summary["generations_completed"], "laps": summary["total_laps"]},
        )
        self.run_logger.stop()
        return summary


__all__ = ["TrainingRunner", "default_run_dir"]
