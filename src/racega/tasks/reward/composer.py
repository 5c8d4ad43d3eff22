"""Reward composition: sums independent components into one strategy."""

from __future__ import annotations

from typing import Dict, List, Sequence

from racega.tasks.reward.base import RewardComponent, RewardComputation, RewardStep, RewardStrategy


class ComposedReward(RewardStrategy):
    """Composite of reward components.

    Example:
        >>> reward = ComposedReward([SpeedReward(), ProgressReward()])
        >>> total, breakdown = reward.compute(step)
        >>> # breakdown = {'speed/bell': 0.004, 'progress': 0.012}
    """

    def __init__(self, components: Sequence[RewardComponent]):
        self.components: List[RewardComponent] = list(components)

    def reset(self) -> None:
        for component in self.components:
            component.reset()

    def rebase(self) -> None:
        """Drop position baselines after the car is teleported."""
        for component in self.components:
            rebase = getattr(component, "rebase", None)
            if rebase is not None:
                rebase()

    def compute(self, step: RewardStep) -> RewardComputation:
        all_components: Dict[str, float] = {}
        for component in self.components:
            for key, value in component.compute(step).items():
                all_components[key] = all_components.get(key, 0.0) + float(value)
        total = sum(all_components.values())
        return total, all_components


__all__ = ["ComposedReward"]
