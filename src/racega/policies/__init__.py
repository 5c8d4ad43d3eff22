"""Policy optimizers; importing this package registers the built-in ones."""

from .base import PolicyBuilder, PolicyFactory, PolicyOptimizer, PolicySpec
from .pursuit import CheckpointPursuitPolicy, build_pursuit_policy
from .ppo import PPOPolicy, build_ppo_policy

__all__ = [
    "CheckpointPursuitPolicy",
    "PPOPolicy",
    "PolicyBuilder",
    "PolicyFactory",
    "PolicyOptimizer",
    "PolicySpec",
    "build_ppo_policy",
    "build_pursuit_policy",
]
