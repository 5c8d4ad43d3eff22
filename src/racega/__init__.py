# src/racega/__init__.py
"""Genetic-PPO training orchestration for lap racing agents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
