import os
from typing import Dict, Optional

import numpy as np
import torch
import torch.nn.functional as F
import torch.optim as optim
from torch.distributions import Normal

from racega.genetic.hyperparameters import Hyperparameters
from racega.policies.base import PolicyFactory, PolicySpec
from racega.policies.ppo.base import BasePPOAgent
from racega.policies.ppo.net import Actor, Critic
from racega.utils.torch_io import resolve_device, safe_load


class PPOPolicy(BasePPOAgent):
    """Tanh-squashed Gaussian PPO learner sized and tuned by one genome."""

    def __init__(
        self,
        hyper: Hyperparameters,
        spec: PolicySpec,
        *,
        device=None,
        max_grad_norm: float = 0.5,
        log_std_init: float = -0.5,
        seed: Optional[int] = None,
    ):
        super().__init__(spec.obs_dim, spec.act_dim, hyper, resolve_device(device))
        self.max_grad_norm = float(max_grad_norm)
        self.normalize_advantage = True
        self.rng = np.random.default_rng(seed)

        self.action_low_np = np.asarray(spec.action_low, dtype=np.float32)
        self.action_high_np = np.asarray(spec.action_high, dtype=np.float32)
        self.action_low_t = torch.as_tensor(self.action_low_np, dtype=torch.float32, device=self.device)
        self.action_high_t = torch.as_tensor(self.action_high_np, dtype=torch.float32, device=self.device)
        self.action_scale_t = self.action_high_t - self.action_low_t
        self.action_scale_t = torch.where(
            torch.abs(self.action_scale_t) < 1e-6,
            torch.ones_like(self.action_scale_t),
            self.action_scale_t,
        )
        self.squash_eps = 1e-6

        hidden = tuple(int(h) for h in hyper.hidden_units)
        self.actor = Actor(self.obs_dim, self.act_dim, hidden, hyper.activation, log_std_init).to(self.device)
        self.critic = Critic(self.obs_dim, hidden, hyper.activation).to(self.device)
        self.optimizer = optim.Adam(
            list(self.actor.parameters()) + list(self.critic.parameters()),
            lr=float(hyper.learning_rate),
        )

        self._update_due = False
        self.updates = 0
        self.last_stats: Optional[Dict[str, float]] = None

    # ------------------- Acting -------------------

    def _scale_action(self, squashed):
        return self.action_low_t + 0.5 * (squashed + 1.0) * self.action_scale_t

    def _obs_tensor(self, obs):
        obs_np = np.asarray(obs, dtype=np.float32)
        if not np.isfinite(obs_np).all():
            obs_np = np.nan_to_num(obs_np, copy=False)
        return obs_np, torch.as_tensor(obs_np, dtype=torch.float32, device=self.device)

    def act(self, obs):
        if self._update_due:
            self.record_final_value(obs)
            self.last_stats = self.update()

        self._drop_unobserved()

        obs_np, obs_t = self._obs_tensor(obs)
        with torch.no_grad():
            mu, std = self.actor(obs_t)
            dist = Normal(mu, std)
            raw_action = dist.sample()
            squashed = torch.tanh(raw_action)
            scaled = self._scale_action(squashed)
            logp = dist.log_prob(raw_action).sum(dim=-1)
            logp -= torch.log(1 - squashed.pow(2) + self.squash_eps).sum(dim=-1)
            val = self.critic(obs_t).squeeze(-1)

        self.obs_buf.append(obs_np)
        self.logp_buf.append(float(logp.item()))
        self.val_buf.append(float(val.item()))
        self.raw_act_buf.append(raw_action.cpu().numpy())

        return scaled.cpu().numpy()

    def act_deterministic(self, obs):
        _, obs_t = self._obs_tensor(obs)
        with torch.no_grad():
            mu, _ = self.actor(obs_t)
            scaled = self._scale_action(torch.tanh(mu))
        return scaled.cpu().numpy()

    def observe(self, reward: float, done: bool) -> Optional[Dict[str, float]]:
        if len(self.rew_buf) >= len(self.obs_buf):
            return None
        self.store_transition(reward, done)
        if not self.ready_to_update():
            return None
        if done:
            self._bootstrap_value = 0.0
            self.last_stats = self.update()
            return self.last_stats
        # Wait for the next observation to bootstrap the truncated rollout.
        self._update_due = True
        return None

    def end_episode(self) -> None:
        """Close the rollout at an episode boundary the last observe did not flag."""

        self._drop_unobserved()
        if not self.done_buf:
            return
        self.done_buf[-1] = True
        if self._update_due:
            self._bootstrap_value = 0.0
            self.last_stats = self.update()

    def set_exploration(self, rate: float) -> None:
        self.apply_exploration(rate)

    def close(self) -> None:
        self.reset_buffer()
        self._update_due = False

    def _drop_unobserved(self) -> None:
        # An action whose outcome was never observed (vehicle fault mid-tick).
        if len(self.obs_buf) > len(self.rew_buf):
            T = len(self.rew_buf)
            del self.obs_buf[T:], self.raw_act_buf[T:], self.logp_buf[T:], self.val_buf[T:]

    def _estimate_value(self, obs):
        _, obs_t = self._obs_tensor(obs)
        with torch.no_grad():
            val = self.critic(obs_t).squeeze(-1)
        return float(val.item())

    # ------------------- Update -------------------

    def compute_losses(self, *, dist, raw_actions, logp_old, advantages, returns, values_pred):
        squashed = torch.tanh(raw_actions)
        logp = dist.log_prob(raw_actions).sum(dim=-1)
        logp -= torch.log(1 - squashed.pow(2) + self.squash_eps).sum(dim=-1)

        ratio = torch.exp(logp - logp_old)
        surr1 = ratio * advantages
        surr2 = torch.clamp(ratio, 1.0 - self.clip_eps, 1.0 + self.clip_eps) * advantages
        policy_loss = -torch.min(surr1, surr2).mean()
        value_loss = F.mse_loss(values_pred, returns)
        entropy = dist.entropy().sum(dim=-1).mean()
        approx_kl = (logp_old - logp).mean()
        return policy_loss, value_loss, entropy, approx_kl

    def update(self):
        """Clipped PPO update over the collected rollout.

        Returns a dict of training statistics when an update occurs, otherwise ``None``.
        """
        self._update_due = False
        if len(self.rew_buf) == 0:
            return None

        self.finish_path(normalize_advantage=self.normalize_advantage)

        obs = torch.as_tensor(np.asarray(self.obs_buf), dtype=torch.float32, device=self.device)
        raw_actions = torch.as_tensor(np.asarray(self.raw_act_buf), dtype=torch.float32, device=self.device)
        logp_old = torch.as_tensor(np.asarray(self.logp_buf), dtype=torch.float32, device=self.device)
        adv = torch.as_tensor(self.adv_buf, dtype=torch.float32, device=self.device)
        rets = torch.as_tensor(self.ret_buf, dtype=torch.float32, device=self.device)

        N = len(self.obs_buf)
        assert N == len(self.raw_act_buf) == len(self.logp_buf) == len(self.adv_buf) == len(self.ret_buf), \
            f"Buffer length mismatch: obs {N}, raw {len(self.raw_act_buf)}, logp {len(self.logp_buf)}, adv {len(self.adv_buf)}"

        idx = np.arange(N)
        policy_losses = []
        value_losses = []
        entropies = []
        approx_kls = []
        for _ in range(self.update_epochs):
            self.rng.shuffle(idx)
            for start in range(0, N, self.minibatch_size):
                mb_idx = idx[start:start + self.minibatch_size]

                mu, std = self.actor(obs[mb_idx])
                if not torch.isfinite(mu).all() or not torch.isfinite(std).all():
                    continue
                dist = Normal(mu, std)
                values_pred = self.critic(obs[mb_idx]).squeeze(-1)

                policy_loss, value_loss, entropy_term, approx_kl = self.compute_losses(
                    dist=dist,
                    raw_actions=raw_actions[mb_idx],
                    logp_old=logp_old[mb_idx],
                    advantages=adv[mb_idx],
                    returns=rets[mb_idx],
                    values_pred=values_pred,
                )
                loss = policy_loss + self.value_coef * value_loss - self.ent_coef * entropy_term

                policy_losses.append(float(policy_loss.detach().cpu().item()))
                value_losses.append(float(value_loss.detach().cpu().item()))
                entropies.append(float(entropy_term.detach().cpu().item()))
                approx_kls.append(float(approx_kl.detach().cpu().item()))

                self.optimizer.zero_grad(set_to_none=True)
                loss.backward()
                if self.max_grad_norm > 0:
                    torch.nn.utils.clip_grad_norm_(self.actor.parameters(), self.max_grad_norm)
                    torch.nn.utils.clip_grad_norm_(self.critic.parameters(), self.max_grad_norm)
                self.optimizer.step()

        self.reset_buffer()
        self.updates += 1

        if not policy_losses:
            return None

        return {
            "policy_loss": float(np.mean(policy_losses)),
            "value_loss": float(np.mean(value_losses)),
            "entropy": float(np.mean(entropies)),
            "approx_kl": float(np.mean(approx_kls)),
        }

    # ------------------- I/O -------------------

    def save(self, path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        torch.save(
            {
                "actor": self.actor.state_dict(),
                "critic": self.critic.state_dict(),
                "optimizer": self.optimizer.state_dict(),
                "hyperparameters": self.hyper.to_dict(),
            },
            path,
        )

    def load(self, path):
        ckpt = safe_load(path, map_location=self.device)
        self.actor.load_state_dict(ckpt["actor"])
        self.critic.load_state_dict(ckpt["critic"])
        self.optimizer.load_state_dict(ckpt["optimizer"])
        self.actor.to(self.device)
        self.critic.to(self.device)


def build_ppo_policy(hyperparameters: Hyperparameters, spec: PolicySpec) -> PPOPolicy:
    settings = spec.settings
    return PPOPolicy(
        hyperparameters,
        spec,
        device=settings.get("device"),
        max_grad_norm=float(settings.get("max_grad_norm", 0.5)),
        log_std_init=float(settings.get("log_std_init", -0.5)),
    )


PolicyFactory.register("ppo", build_ppo_policy)
