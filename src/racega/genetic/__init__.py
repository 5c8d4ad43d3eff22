"""Hyperparameter genomes, fitness evaluation and the genetic population."""

from .fitness import FitnessEvaluator, FitnessWeights
from .genome import Genome, next_agent_id
from .hyperparameters import Activation, Hyperparameters, PARAM_SPECS
from .population import GenerationSummary, PopulationManager, exploration_rate

__all__ = [
    "Activation",
    "FitnessEvaluator",
    "FitnessWeights",
    "GenerationSummary",
    "Genome",
    "Hyperparameters",
    "PARAM_SPECS",
    "PopulationManager",
    "exploration_rate",
    "next_agent_id",
]
