"""Tests for genomes and the genetic population manager."""
import numpy as np
import pytest

from racega.errors import InvariantViolation
from racega.genetic.genome import Genome, next_agent_id
from racega.genetic.hyperparameters import Hyperparameters
from racega.genetic.population import GenerationSummary, PopulationManager, exploration_rate
from racega.utils.config_schema import GeneticSchema


class FakePolicy:
    def __init__(self):
        self.closed = 0

    def close(self):
        self.closed += 1


def manager(size=10, elite=2, **kwargs):
    kwargs.setdefault("rng", np.random.default_rng(7))
    return PopulationManager(size, elite_count=elite, **kwargs)


def assign_fitness(population):
    for rank, genome in enumerate(population):
        genome.fitness = float(rank)


class TestGenome:
    def test_agent_ids_are_unique(self):
        ids = {next_agent_id() for _ in range(100)}
        assert len(ids) == 100
        assert Genome().agent_id != Genome().agent_id

    def test_clone_elite_keeps_identity_and_metrics(self):
        policy = FakePolicy()
        genome = Genome(fitness=12.5, checkpoints_passed=30, laps_completed=2, episodes_evaluated=5, policy=policy)
        clone = genome.clone_elite()

        assert clone.agent_id == genome.agent_id
        assert clone.fitness == 12.5
        assert clone.laps_completed == 2
        assert clone.policy is policy
        assert clone.hyperparameters is not genome.hyperparameters
        assert clone.hyperparameters.hidden_units is not genome.hyperparameters.hidden_units

    def test_release_closes_the_policy(self):
        policy = FakePolicy()
        genome = Genome(policy=policy)
        genome.release()
        genome.release()
        assert policy.closed == 1
        assert genome.policy is None

    def test_to_dict(self):
        payload = Genome(fitness=1.5).to_dict()
        assert payload["fitness"] == 1.5
        assert payload["hyperparameters"]["activation"] == "relu"
        assert "policy" not in payload


class TestInitialisation:
    def test_population_size_and_seed_genome(self):
        base = Hyperparameters(learning_rate=1.0e-3)
        pop = manager(size=6, base_hyperparameters=base)
        genomes = pop.initialize_population()

        assert len(genomes) == 6
        assert genomes[0].hyperparameters.to_dict() == base.to_dict()
        assert genomes[0].hyperparameters is not base
        assert len({g.agent_id for g in genomes}) == 6
        assert pop.generation == 1

    def test_override_size(self):
        pop = manager(size=10, elite=4)
        pop.initialize_population(3)
        assert pop.population_size == 3
        assert pop.elite_count == 3
        assert len(pop.population) == 3

    def test_reinitialising_releases_old_genomes(self):
        pop = manager(size=3, elite=1)
        pop.initialize_population()
        policies = [FakePolicy() for _ in pop.population]
        for genome, policy in zip(pop.population, policies):
            genome.policy = policy
        pop.initialize_population()
        assert [p.closed for p in policies] == [1, 1, 1]

    @pytest.mark.parametrize("size, elite", [(1, 0), (5, 6)])
    def test_bad_sizes_are_rejected(self, size, elite):
        with pytest.raises(ValueError):
            PopulationManager(size, elite_count=elite)

    def test_from_config(self):
        cfg = GeneticSchema(population_size=4, elite_count=1, seed=3, tournament_size=2)
        pop = PopulationManager.from_config(cfg)
        assert pop.population_size == 4
        assert pop.elite_count == 1
        assert pop.tournament_size == 2


class TestEvolve:
    """Elitism, size preservation and ownership of child hyperparameters."""

    @pytest.mark.parametrize("size", [2, 10, 50])
    def test_population_size_is_preserved(self, size):
        pop = manager(size=size, elite=min(2, size))
        pop.initialize_population()
        for _ in range(3):
            assign_fitness(pop.population)
            pop.evolve()
            assert len(pop.population) == size
            assert len({g.agent_id for g in pop.population}) == size
        assert pop.generation == 4

    def test_elites_survive_with_their_metrics(self):
        pop = manager(size=6, elite=2)
        pop.initialize_population()
        assign_fitness(pop.population)
        best, runner_up = pop.population[5], pop.population[4]
        best.policy = FakePolicy()
        best.laps_completed = 3

        pop.evolve()

        survivors = pop.population[:2]
        assert [g.agent_id for g in survivors] == [best.agent_id, runner_up.agent_id]
        assert survivors[0].fitness == 5.0
        assert survivors[0].laps_completed == 3
        assert survivors[0].policy is best.policy
        assert best.policy.closed == 0

    def test_non_elites_are_released(self):
        pop = manager(size=4, elite=1)
        pop.initialize_population()
        assign_fitness(pop.population)
        policies = [FakePolicy() for _ in pop.population]
        for genome, policy in zip(pop.population, policies):
            genome.policy = policy

        pop.evolve()

        assert [p.closed for p in policies] == [1, 1, 1, 0]

    def test_children_are_fresh_genomes(self):
        pop = manager(size=8, elite=2)
        pop.initialize_population()
        assign_fitness(pop.population)
        old_population = list(pop.population)
        old_ids = {g.agent_id for g in old_population}
        old_hypers = {id(g.hyperparameters) for g in old_population}

        pop.evolve()

        children = pop.population[2:]
        assert all(g.agent_id not in old_ids for g in children)
        assert all(g.fitness == 0.0 and g.policy is None for g in children)
        hypers = [id(g.hyperparameters) for g in pop.population]
        assert len(set(hypers)) == len(hypers)
        assert not set(hypers) & old_hypers

    def test_summary_describes_the_old_generation(self):
        pop = manager(size=4, elite=1)
        pop.initialize_population()
        assign_fitness(pop.population)
        for genome in pop.population:
            genome.checkpoints_passed = 10
            genome.laps_completed = 1
        best_id = pop.population[3].agent_id

        summary = pop.evolve()

        assert isinstance(summary, GenerationSummary)
        assert summary.generation == 1
        assert summary.max_fitness == 3.0
        assert summary.avg_fitness == pytest.approx(1.5)
        assert summary.avg_checkpoints == pytest.approx(10.0)
        assert summary.total_laps == 4
        assert summary.best_agent_id == best_id
        assert summary.exploration_rate == pytest.approx(0.4)
        assert pop.history == [summary]
        assert set(summary.record()) == set(GenerationSummary.RECORD_FIELDS)

    def test_evolve_before_initialise(self):
        with pytest.raises(InvariantViolation):
            manager().evolve()


class TestOperators:
    def test_tournament_prefers_fitter_genomes(self):
        pop = manager(size=10, elite=0, tournament_size=3)
        pop.initialize_population()
        assign_fitness(pop.population)
        best, worst = pop.population[9], pop.population[0]

        picks = [pop.tournament_select() for _ in range(300)]

        assert sum(p is best for p in picks) > sum(p is worst for p in picks)

    def test_tournament_on_empty_pool(self):
        with pytest.raises(InvariantViolation):
            manager().tournament_select([])

    def test_no_crossover_clones_the_fitter_parent(self):
        pop = manager(crossover_rate=0.0)
        parent1 = Genome(hyperparameters=Hyperparameters(gamma=0.9), fitness=1.0)
        parent2 = Genome(hyperparameters=Hyperparameters(gamma=0.95), fitness=2.0)

        child = pop.crossover(parent1, parent2)

        assert child.gamma == 0.95
        assert child is not parent2.hyperparameters

    def test_diversity(self):
        pop = manager(size=3, elite=1, initial_mutation_rate=0.0)
        pop.initialize_population()
        assert pop.diversity() == 0.0
        pop.population[1].hyperparameters.gamma = 0.8
        assert pop.diversity() > 0.0

    def test_genome_by_agent(self):
        pop = manager(size=3, elite=1)
        pop.initialize_population()
        target = pop.population[2]
        assert pop.genome_by_agent(target.agent_id) is target
        assert pop.genome_by_agent(-1) is None


class TestInvariants:
    """Strict mode raises; lenient mode logs and repairs."""

    def test_strict_mode_raises_on_negative_fitness(self):
        pop = manager(size=3, elite=1)
        pop.initialize_population()
        pop.population[0].fitness = -1.0
        with pytest.raises(InvariantViolation):
            pop.check_invariants()

    def test_strict_mode_raises_on_size_drift(self):
        pop = manager(size=3, elite=1)
        pop.initialize_population()
        pop.population.pop()
        with pytest.raises(InvariantViolation):
            pop.evolve()

    def test_repair_mode_fixes_the_population(self):
        pop = manager(size=3, elite=1, strict_invariants=False)
        pop.initialize_population()
        pop.population[0].fitness = float("nan")
        pop.population[1].agent_id = pop.population[2].agent_id
        pop.population.append(Genome())

        pop.check_invariants()

        assert len(pop.population) == 3
        assert pop.population[0].fitness == 0.0
        assert len({g.agent_id for g in pop.population}) == 3

    def test_repair_mode_refills(self):
        pop = manager(size=4, elite=1, strict_invariants=False)
        pop.initialize_population()
        del pop.population[1:]
        pop.check_invariants()
        assert len(pop.population) == 4


class TestExplorationRate:
    def test_schedule(self):
        assert exploration_rate(1) == pytest.approx(0.4)
        assert exploration_rate(2) < exploration_rate(1)
        assert exploration_rate(1000) == pytest.approx(0.05)
        assert exploration_rate(0) == pytest.approx(0.4)
