"""Torch PPO policy driven directly by a genome's hyperparameters."""

from .ppo import PPOPolicy, build_ppo_policy

__all__ = ["PPOPolicy", "build_ppo_policy"]
