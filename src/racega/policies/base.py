"""Policy optimizer boundary and the registry used to build one per genome."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from racega.errors import ConfigurationError
from racega.genetic.hyperparameters import Hyperparameters


@runtime_checkable
class PolicyOptimizer(Protocol):
    """Black-box learner: consumes hyperparameters, maps observations to actions."""

    def act(self, obs: np.ndarray) -> np.ndarray:
        ...

    def observe(self, reward: float, done: bool) -> Optional[Dict[str, float]]:
        """Record the outcome of the last action; returns update stats when learning happened."""
        ...

    def end_episode(self) -> None:
        """Mark the episode boundary; called once when the agent's episode ends."""
        ...

    def set_exploration(self, rate: float) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class PolicySpec:
    obs_dim: int
    act_dim: int
    action_low: Sequence[float]
    action_high: Sequence[float]
    max_speed: float = 30.0
    settings: Dict[str, Any] = field(default_factory=dict)


PolicyBuilder = Callable[[Hyperparameters, PolicySpec], PolicyOptimizer]


class PolicyFactory:
    """Name -> builder registry for policy optimizers."""

    _registry: Dict[str, PolicyBuilder] = {}

    @classmethod
    def register(cls, name: str, builder: PolicyBuilder) -> None:
        cls._registry[name.lower()] = builder

    @classmethod
    def create(cls, name: str, hyperparameters: Hyperparameters, spec: PolicySpec) -> PolicyOptimizer:
        key = name.lower()
        if key not in cls._registry:
            raise ConfigurationError(
                f"Unknown policy type: {name}. Available types: {cls.available()}"
            )
        return cls._registry[key](hyperparameters, spec)

    @classmethod
    def available(cls) -> List[str]:
        return sorted(cls._registry)


__all__ = ["PolicyBuilder", "PolicyFactory", "PolicyOptimizer", "PolicySpec"]
