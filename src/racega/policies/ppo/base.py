"""Rollout buffer and GAE utilities for the PPO policy."""

from __future__ import annotations

from typing import List

import numpy as np
import torch

from racega.genetic.hyperparameters import Hyperparameters


class BasePPOAgent:
    """Rollout buffer + GAE shared by PPO variants.

    Every learning knob is read from the :class:`Hyperparameters` handed in
    at construction, so a genome's values reach the optimizer unchanged.
    """

    def __init__(self, obs_dim: int, act_dim: int, hyper: Hyperparameters, device: torch.device) -> None:
        self.obs_dim = int(obs_dim)
        self.act_dim = int(act_dim)
        self.hyper = hyper

        self.gamma = float(hyper.gamma)
        self.lam = float(hyper.gae_lambda)
        self.clip_eps = float(hyper.clip_epsilon)
        self.update_epochs = int(hyper.num_epochs)
        self.minibatch_size = int(hyper.batch_size)
        self.rollout_size = int(hyper.buffer_size)
        self.value_coef = float(hyper.value_coef)
        self.base_ent_coef = float(hyper.entropy_coef)
        self.ent_coef = self.base_ent_coef

        self.device = device
        self.reset_buffer()

    # ------------------------------------------------------------------
    # Rollout buffer helpers
    # ------------------------------------------------------------------
    def reset_buffer(self) -> None:
        self.obs_buf: List[np.ndarray] = []
        self.raw_act_buf: List[np.ndarray] = []
        self.rew_buf: List[float] = []
        self.done_buf: List[bool] = []
        self.logp_buf: List[float] = []
        self.val_buf: List[float] = []
        self.adv_buf = np.zeros(0, dtype=np.float32)
        self.ret_buf = np.zeros(0, dtype=np.float32)
        self._bootstrap_value: float = 0.0

    def store_transition(self, rew: float, done: bool) -> None:
        self.rew_buf.append(float(rew))
        self.done_buf.append(bool(done))

    def record_final_value(self, obs) -> None:
        """Bootstrap the value of the state following the last stored transition."""

        self._bootstrap_value = float(self._estimate_value(obs))

    def _estimate_value(self, obs) -> float:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Advantage / return calculation
    # ------------------------------------------------------------------
    def finish_path(self, *, normalize_advantage: bool = True) -> None:
        T = min(len(self.rew_buf), len(self.obs_buf), len(self.val_buf))
        if T == 0:
            self.adv_buf = np.zeros(0, dtype=np.float32)
            self.ret_buf = np.zeros(0, dtype=np.float32)
            return

        rewards = np.asarray(self.rew_buf[:T], dtype=np.float32)
        values = np.asarray(self.val_buf[:T], dtype=np.float32)
        dones = np.asarray(self.done_buf[:T], dtype=np.float32)

        adv = np.zeros(T, dtype=np.float32)
        gae = 0.0
        for t in reversed(range(T)):
            mask = 1.0 - dones[t]
            next_value = self._bootstrap_value if t == T - 1 else values[t + 1]
            delta = rewards[t] + self.gamma * next_value * mask - values[t]
            gae = delta + self.gamma * self.lam * mask * gae
            adv[t] = gae
        ret = adv + values

        if normalize_advantage and adv.size:
            std = adv.std()
            if std > 1e-8:
                adv = (adv - adv.mean()) / (std + 1e-8)
            else:
                adv = np.zeros_like(adv)

        self.adv_buf = adv
        self.ret_buf = ret
        self.obs_buf = self.obs_buf[:T]
        self.raw_act_buf = self.raw_act_buf[:T]
        self.logp_buf = self.logp_buf[:T]
        self.val_buf = list(values)
        self.rew_buf = self.rew_buf[:T]
        self.done_buf = self.done_buf[:T]

    def ready_to_update(self) -> bool:
        return len(self.rew_buf) >= self.rollout_size

    def apply_exploration(self, rate: float) -> None:
        """Scale the entropy bonus by the generation's exploration rate."""

        self.ent_coef = self.base_ent_coef * (1.0 + max(float(rate), 0.0))


__all__ = ["BasePPOAgent"]
