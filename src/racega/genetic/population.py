"""Genetic population manager: elitism, tournament selection, crossover, mutation."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from racega.errors import InvariantViolation
from racega.genetic.genome import Genome
from racega.genetic.hyperparameters import Hyperparameters

logger = logging.getLogger(__name__)

ReleaseFn = Callable[[Genome], None]


def exploration_rate(generation: int) -> float:
    """Exploration schedule handed to policies: decays from 0.4 towards 0.05."""

    return max(0.05, 0.4 * math.exp(-0.2 * (max(int(generation), 1) - 1)))


@dataclass
class GenerationSummary:
    generation: int
    avg_fitness: float
    max_fitness: float
    avg_checkpoints: float
    total_laps: int
    avg_speed: float
    best_agent_id: Optional[int] = None
    best_hyperparameters: Dict[str, Any] = field(default_factory=dict)
    diversity: float = 0.0
    exploration_rate: float = 0.0

    RECORD_FIELDS = (
        "generation",
        "avg_fitness",
        "max_fitness",
        "avg_checkpoints",
        "total_laps",
        "avg_speed",
    )

    def record(self) -> Dict[str, Any]:
        """Row for the per-generation training record."""

        return {key: getattr(self, key) for key in self.RECORD_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        payload = self.record()
        payload.update(
            {
                "best_agent_id": self.best_agent_id,
                "best_hyperparameters": dict(self.best_hyperparameters),
                "diversity": self.diversity,
                "exploration_rate": self.exploration_rate,
            }
        )
        return payload


class PopulationManager:
    """Owns the genome population and produces each new generation."""

    def __init__(
        self,
        population_size: int = 10,
        *,
        elite_count: int = 2,
        mutation_rate: float = 0.1,
        mutation_magnitude: float = 0.2,
        crossover_rate: float = 0.7,
        tournament_size: int = 3,
        initial_mutation_rate: float = 0.5,
        initial_mutation_magnitude: float = 0.3,
        base_hyperparameters: Optional[Hyperparameters] = None,
        rng: Optional[np.random.Generator] = None,
        strict_invariants: bool = True,
        release: Optional[ReleaseFn] = None,
    ) -> None:
        if population_size < 2:
            raise ValueError(f"population_size must be at least 2, got {population_size}")
        if not 0 <= elite_count <= population_size:
            raise ValueError(f"elite_count must be in [0, {population_size}], got {elite_count}")
        self.population_size = int(population_size)
        self.elite_count = int(elite_count)
        self.mutation_rate = float(mutation_rate)
        self.mutation_magnitude = float(mutation_magnitude)
        self.crossover_rate = float(crossover_rate)
        self.tournament_size = max(int(tournament_size), 1)
        self.initial_mutation_rate = float(initial_mutation_rate)
        self.initial_mutation_magnitude = float(initial_mutation_magnitude)
        self.base_hyperparameters = base_hyperparameters or Hyperparameters()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.strict_invariants = bool(strict_invariants)
        self.release: ReleaseFn = release or Genome.release

        self.population: List[Genome] = []
        self.generation = 1
        self.history: List[GenerationSummary] = []

    @classmethod
    def from_config(
        cls,
        cfg,
        *,
        base_hyperparameters: Optional[Hyperparameters] = None,
        rng: Optional[np.random.Generator] = None,
        release: Optional[ReleaseFn] = None,
    ) -> "PopulationManager":
        if rng is None:
            rng = np.random.default_rng(cfg.seed)
        return cls(
            cfg.population_size,
            elite_count=cfg.elite_count,
            mutation_rate=cfg.mutation_rate,
            mutation_magnitude=cfg.mutation_magnitude,
            crossover_rate=cfg.crossover_rate,
            tournament_size=cfg.tournament_size,
            initial_mutation_rate=cfg.initial_mutation_rate,
            initial_mutation_magnitude=cfg.initial_mutation_magnitude,
            base_hyperparameters=base_hyperparameters,
            rng=rng,
            strict_invariants=cfg.strict_invariants,
            release=release,
        )

    # ------------------------------------------------------------------
    # Population lifecycle
    # ------------------------------------------------------------------
    def initialize_population(self, size: Optional[int] = None) -> List[Genome]:
        """Seed ``size`` genomes; every genome but the first is heavily mutated."""

        if size is not None:
            if size < 2:
                raise ValueError(f"population_size must be at least 2, got {size}")
            self.population_size = int(size)
            self.elite_count = min(self.elite_count, self.population_size)

        for genome in self.population:
            self.release(genome)

        self.population = []
        for index in range(self.population_size):
            hyper = self.base_hyperparameters.clone()
            if index > 0:
                hyper.mutate(self.initial_mutation_rate, self.initial_mutation_magnitude, self.rng)
            self.population.append(Genome(hyperparameters=hyper))
        self.generation = 1
        self.history = []
        self.check_invariants()
        logger.info("Initialised population of %d genomes", self.population_size)
        return self.population

    def evolve(self) -> GenerationSummary:
        """Replace the population with the next generation and return the summary of the old one."""

        if not self.population:
            raise InvariantViolation("evolve() called before initialize_population()")
        self.check_invariants()

        summary = self.summarize()
        self.history.append(summary)

        ranked = sorted(self.population, key=lambda g: g.fitness, reverse=True)
        elites = ranked[: self.elite_count]
        next_population: List[Genome] = [genome.clone_elite() for genome in elites]

        while len(next_population) < self.population_size:
            parent1 = self.tournament_select(ranked)
            parent2 = self.tournament_select(ranked)
            child_hyper = self.crossover(parent1, parent2)
            self.mutate(child_hyper)
            next_population.append(Genome(hyperparameters=child_hyper))

        elite_ids = {id(genome) for genome in elites}
        for genome in ranked:
            if id(genome) not in elite_ids:
                self.release(genome)

        self.population = next_population
        self.generation += 1
        self.check_invariants()
        logger.info(
            "Generation %d evolved: max fitness %.3f, avg fitness %.3f",
            summary.generation,
            summary.max_fitness,
            summary.avg_fitness,
        )
        return summary

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------
    def tournament_select(self, candidates: Optional[List[Genome]] = None) -> Genome:
        pool = candidates if candidates is not None else self.population
        if not pool:
            raise InvariantViolation("tournament selection on an empty population")
        k = min(self.tournament_size, len(pool))
        picks = self.rng.integers(0, len(pool), size=k)
        best = pool[int(picks[0])]
        for index in picks[1:]:
            contender = pool[int(index)]
            if contender.fitness > best.fitness:
                best = contender
        return best

    def crossover(self, parent1: Genome, parent2: Genome) -> Hyperparameters:
        """Child hyperparameters; always a fresh object owned by the child."""

        if self.rng.random() < self.crossover_rate:
            return Hyperparameters.crossover(parent1.hyperparameters, parent2.hyperparameters, self.rng)
        fitter = parent1 if parent1.fitness >= parent2.fitness else parent2
        return fitter.hyperparameters.clone()

    def mutate(
        self,
        hyperparameters: Hyperparameters,
        rate: Optional[float] = None,
        magnitude: Optional[float] = None,
    ) -> Hyperparameters:
        hyperparameters.mutate(
            self.mutation_rate if rate is None else rate,
            self.mutation_magnitude if magnitude is None else magnitude,
            self.rng,
        )
        return hyperparameters

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def best_genome(self) -> Optional[Genome]:
        if not self.population:
            return None
        return max(self.population, key=lambda g: g.fitness)

    def genome_by_agent(self, agent_id: int) -> Optional[Genome]:
        for genome in self.population:
            if genome.agent_id == agent_id:
                return genome
        return None

    def diversity(self) -> float:
        """Mean pairwise distance between normalised hyperparameter vectors."""

        if len(self.population) < 2:
            return 0.0
        vectors = np.stack([g.hyperparameters.normalized_vector() for g in self.population])
        diffs = vectors[:, None, :] - vectors[None, :, :]
        dists = np.sqrt((diffs ** 2).sum(axis=-1))
        n = len(self.population)
        return float(dists.sum() / (n * (n - 1)))

    def summarize(self) -> GenerationSummary:
        population = self.population
        count = max(len(population), 1)
        best = self.best_genome()
        return GenerationSummary(
            generation=self.generation,
            avg_fitness=float(sum(g.fitness for g in population) / count),
            max_fitness=float(best.fitness) if best is not None else 0.0,
            avg_checkpoints=float(sum(g.checkpoints_passed for g in population) / count),
            total_laps=int(sum(g.laps_completed for g in population)),
            avg_speed=float(sum(g.avg_speed for g in population) / count),
            best_agent_id=best.agent_id if best is not None else None,
            best_hyperparameters=best.hyperparameters.to_dict() if best is not None else {},
            diversity=self.diversity(),
            exploration_rate=exploration_rate(self.generation),
        )

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------
    def check_invariants(self) -> None:
        problems: List[str] = []
        if len(self.population) != self.population_size:
            problems.append(
                f"population size {len(self.population)} != configured {self.population_size}"
            )
        for genome in self.population:
            violations = genome.hyperparameters.violations()
            if violations:
                problems.append(f"agent {genome.agent_id}: {'; '.join(violations)}")
            if not math.isfinite(genome.fitness) or genome.fitness < 0.0:
                problems.append(f"agent {genome.agent_id}: fitness {genome.fitness!r} is negative or non-finite")
        ids = [genome.agent_id for genome in self.population]
        if len(set(ids)) != len(ids):
            problems.append("duplicate agent ids in population")

        if not problems:
            return
        message = "; ".join(problems)
        if self.strict_invariants:
            raise InvariantViolation(message)
        logger.error("Population invariant violated, repairing: %s", message)
        self._repair()

    def _repair(self) -> None:
        for surplus in self.population[self.population_size:]:
            self.release(surplus)
        del self.population[self.population_size:]
        while len(self.population) < self.population_size:
            hyper = self.base_hyperparameters.clone()
            self.mutate(hyper)
            self.population.append(Genome(hyperparameters=hyper))
        seen = set()
        for index, genome in enumerate(self.population):
            genome.hyperparameters.clamp()
            if not math.isfinite(genome.fitness) or genome.fitness < 0.0:
                genome.fitness = 0.0
            if genome.agent_id in seen:
                self.population[index] = Genome(hyperparameters=genome.hyperparameters.clone())
            seen.add(self.population[index].agent_id)


__all__ = ["GenerationSummary", "PopulationManager", "exploration_rate"]
