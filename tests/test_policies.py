"""Tests for the policy registry, the pursuit controller and the PPO learner."""
import numpy as np
import pytest
import torch.nn as nn

from racega.envs.observation import observation_size
from racega.envs.vehicle import ACTION_DIM, ACTION_HIGH, ACTION_LOW, VehicleParams
from racega.errors import ConfigurationError
from racega.genetic.hyperparameters import Activation, Hyperparameters
from racega.policies import CheckpointPursuitPolicy, PolicyFactory, PolicySpec, PPOPolicy

OBS_DIM = observation_size(VehicleParams())


@pytest.fixture
def spec():
    return PolicySpec(
        obs_dim=OBS_DIM,
        act_dim=ACTION_DIM,
        action_low=ACTION_LOW.tolist(),
        action_high=ACTION_HIGH.tolist(),
        settings={"device": "cpu", "target_speed": 10.0, "steer_gain": 1.5},
    )


@pytest.fixture
def small_hyper():
    return Hyperparameters(
        hidden_units=[32, 16],
        buffer_size=256,
        batch_size=32,
        num_epochs=1,
        learning_rate=1.0e-3,
        activation=Activation.TANH,
    )


def observation(rng):
    return rng.uniform(-1.0, 1.0, size=OBS_DIM).astype(np.float32)


class TestPolicyFactory:
    def test_builtin_policies_are_registered(self):
        assert {"ppo", "pursuit"} <= set(PolicyFactory.available())

    def test_unknown_policy(self, spec):
        with pytest.raises(ConfigurationError):
            PolicyFactory.create("dqn", Hyperparameters(), spec)

    def test_pursuit_reads_its_settings(self, spec):
        policy = PolicyFactory.create("Pursuit", Hyperparameters(), spec)
        assert isinstance(policy, CheckpointPursuitPolicy)
        assert policy.target_speed == 10.0
        assert policy.steer_gain == 1.5


class TestCheckpointPursuitPolicy:
    """Steers at the bearing in the observation and holds a target speed."""

    def make_obs(self, speed_fraction, bx, by):
        obs = np.zeros(OBS_DIM, dtype=np.float32)
        obs[0] = speed_fraction
        obs[2] = bx
        obs[3] = by
        return obs

    def test_straight_ahead_from_standstill(self):
        action = CheckpointPursuitPolicy(target_speed=10.0).act(self.make_obs(0.0, 1.0, 0.0))
        assert action.tolist() == [0.0, 1.0, 0.0]

    def test_turns_towards_a_target_on_the_left(self):
        action = CheckpointPursuitPolicy().act(self.make_obs(0.0, 0.0, 1.0))
        assert action[0] == pytest.approx(1.0)

    def test_turns_towards_a_target_on_the_right(self):
        action = CheckpointPursuitPolicy(steer_gain=0.5).act(self.make_obs(0.0, 1.0, -1.0))
        assert action[0] == pytest.approx(-0.5 * np.pi / 4)

    def test_brakes_when_too_fast(self):
        action = CheckpointPursuitPolicy(max_speed=30.0, target_speed=10.0).act(self.make_obs(1.0, 1.0, 0.0))
        assert action[1] == 0.0
        assert action[2] == 1.0

    def test_observe_accumulates_reward(self):
        policy = CheckpointPursuitPolicy()
        assert policy.observe(1.5, False) is None
        policy.observe(-0.5, True)
        assert policy.total_reward == pytest.approx(1.0)


@pytest.mark.unit
class TestPPOPolicy:
    """The PPO learner is sized and tuned by the genome's hyperparameters."""

    def test_network_follows_the_hyperparameters(self, small_hyper, spec):
        policy = PolicyFactory.create("ppo", small_hyper, spec)

        assert isinstance(policy, PPOPolicy)
        widths = [m.out_features for m in policy.actor.body if isinstance(m, nn.Linear)]
        assert widths == [32, 16]
        assert any(isinstance(m, nn.Tanh) for m in policy.actor.body)
        assert policy.optimizer.param_groups[0]["lr"] == pytest.approx(1.0e-3)
        assert policy.rollout_size == 256
        assert policy.minibatch_size == 32

    def test_actions_respect_bounds(self, small_hyper, spec, rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        for _ in range(50):
            action = policy.act(observation(rng))
            assert action.shape == (ACTION_DIM,)
            assert np.all(action >= ACTION_LOW - 1e-6)
            assert np.all(action <= ACTION_HIGH + 1e-6)

    def test_update_after_a_full_rollout(self, small_hyper, spec, rng, seed_rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        stats = None
        for step in range(256):
            policy.act(observation(rng))
            stats = policy.observe(float(rng.normal()), done=step == 255)

        assert policy.updates == 1
        assert set(stats) == {"policy_loss", "value_loss", "entropy", "approx_kl"}
        assert all(np.isfinite(value) for value in stats.values())
        assert policy.rew_buf == []

    def test_truncated_rollout_updates_on_the_next_action(self, small_hyper, spec, rng, seed_rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        for _ in range(256):
            policy.act(observation(rng))
            assert policy.observe(0.1, done=False) is None
        assert policy.updates == 0

        policy.act(observation(rng))

        assert policy.updates == 1
        assert policy.last_stats is not None
        assert len(policy.obs_buf) == 1

    def test_observe_without_an_action_is_ignored(self, small_hyper, spec):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        assert policy.observe(1.0, False) is None
        assert policy.rew_buf == []

    def test_unobserved_action_is_dropped(self, small_hyper, spec, rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        policy.act(observation(rng))
        policy.act(observation(rng))
        assert len(policy.obs_buf) == 1

    def test_end_episode_marks_the_last_transition_done(self, small_hyper, spec, rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        for _ in range(3):
            policy.act(observation(rng))
            policy.observe(0.5, done=False)
        policy.act(observation(rng))

        policy.end_episode()

        assert policy.done_buf == [False, False, True]
        assert len(policy.obs_buf) == 3
        policy.end_episode()
        assert policy.done_buf == [False, False, True]

    def test_end_episode_flushes_a_pending_update(self, small_hyper, spec, rng, seed_rng):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        for _ in range(256):
            policy.act(observation(rng))
            policy.observe(0.1, done=False)

        policy.end_episode()

        assert policy.updates == 1
        assert policy.rew_buf == []

    def test_end_episode_on_an_empty_rollout(self, small_hyper, spec):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        policy.end_episode()
        assert policy.done_buf == []

    def test_exploration_scales_entropy(self, small_hyper, spec):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        policy.set_exploration(0.4)
        assert policy.ent_coef == pytest.approx(small_hyper.entropy_coef * 1.4)

    def test_save_and_load(self, small_hyper, spec, rng, tmp_path):
        policy = PolicyFactory.create("ppo", small_hyper, spec)
        obs = observation(rng)
        path = tmp_path / "models" / "agent.pt"
        policy.save(str(path))

        restored = PolicyFactory.create("ppo", small_hyper, spec)
        restored.load(str(path))

        np.testing.assert_allclose(restored.act_deterministic(obs), policy.act_deterministic(obs), rtol=1e-6)
