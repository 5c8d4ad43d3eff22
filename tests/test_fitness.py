"""Tests for episode fitness and the running average."""
import pytest

from racega.genetic.fitness import FitnessEvaluator, FitnessWeights
from racega.genetic.genome import Genome
from racega.runner.results import EpisodeEndReason, EpisodeResult
from racega.utils.config_schema import FitnessSchema


def result(checkpoints=4, laps=1, distance=100.0, duration=10.0):
    return EpisodeResult(
        agent_id=1,
        reason=EpisodeEndReason.LAPS_COMPLETE,
        checkpoints_passed=checkpoints,
        laps_completed=laps,
        distance=distance,
        duration=duration,
    )


@pytest.fixture
def evaluator():
    return FitnessEvaluator(FitnessWeights(speed=1.0, checkpoint=5.0, lap=10.0, min_episode_duration=0.1))


class TestEpisodeFitness:
    """Weighted sum of checkpoints, laps and average speed."""

    def test_weighted_sum(self, evaluator):
        assert evaluator.episode_fitness(result()) == pytest.approx(5.0 * 4 + 10.0 * 1 + 10.0)

    def test_duration_has_a_floor(self, evaluator):
        assert evaluator.average_speed(result(distance=1.0, duration=0.0)) == pytest.approx(10.0)

    def test_bad_distance_scores_no_speed(self, evaluator):
        assert evaluator.average_speed(result(distance=float("nan"))) == 0.0
        assert evaluator.average_speed(result(distance=-5.0)) == 0.0

    def test_empty_episode_scores_zero(self, evaluator):
        assert evaluator.episode_fitness(result(checkpoints=0, laps=0, distance=0.0)) == 0.0

    def test_from_config(self):
        evaluator = FitnessEvaluator.from_config(FitnessSchema(w_speed=2.0, w_checkpoint=0.0, w_lap=0.0))
        assert evaluator.episode_fitness(result()) == pytest.approx(20.0)


class TestRunningAverage:
    """Fitness is averaged over the episodes of a generation."""

    def test_average_over_episodes(self, evaluator):
        genome = Genome()
        first = evaluator.evaluate(genome, result(), episode=1)
        second = evaluator.evaluate(genome, result(checkpoints=0, laps=0, distance=0.0), episode=2)

        assert first == pytest.approx(40.0)
        assert second == 0.0
        assert genome.fitness == pytest.approx(20.0)
        assert genome.avg_speed == pytest.approx(5.0)
        assert genome.checkpoints_passed == 4
        assert genome.laps_completed == 1
        assert genome.total_distance == pytest.approx(100.0)
        assert genome.episodes_evaluated == 2

    def test_episode_one_restarts_the_average(self, evaluator):
        genome = Genome(fitness=99.0)
        evaluator.evaluate(genome, result(), episode=1)
        assert genome.fitness == pytest.approx(40.0)

    def test_episode_numbers_start_at_one(self, evaluator):
        with pytest.raises(ValueError):
            evaluator.evaluate(Genome(), result(), episode=0)

    def test_fitness_is_never_negative(self, evaluator):
        genome = Genome()
        evaluator.evaluate(genome, result(checkpoints=-3, laps=-1, distance=-10.0), episode=1)
        assert genome.fitness == 0.0
        assert genome.checkpoints_passed == 0
