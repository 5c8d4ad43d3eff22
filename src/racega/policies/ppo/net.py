from typing import Sequence

import torch
import torch.nn as nn

from racega.genetic.hyperparameters import Activation

_ACTIVATIONS = {
    Activation.TANH: nn.Tanh,
    Activation.RELU: nn.ReLU,
}


def _mlp(in_dim: int, hidden_sizes: Sequence[int], activation: Activation) -> tuple:
    layers = []
    last_dim = in_dim
    act_cls = _ACTIVATIONS[Activation(activation)]
    for h in hidden_sizes:
        layers += [nn.Linear(last_dim, int(h)), act_cls()]
        last_dim = int(h)
    return nn.Sequential(*layers), last_dim


class Actor(nn.Module):
    def __init__(self, obs_dim, act_dim, hidden_sizes=(128, 64), activation=Activation.RELU, log_std_init=-0.5):
        super().__init__()
        self.body, last_dim = _mlp(obs_dim, hidden_sizes, activation)
        self.mu_head = nn.Linear(last_dim, act_dim)
        self.log_std = nn.Parameter(torch.full((act_dim,), float(log_std_init)))

    def forward(self, x):
        x = self.body(x)
        mu = self.mu_head(x)
        std = torch.exp(self.log_std.clamp(-5.0, 2.0))
        return mu, std


class Critic(nn.Module):
    def __init__(self, obs_dim, hidden_sizes=(128, 64), activation=Activation.RELU):
        super().__init__()
        self.body, last_dim = _mlp(obs_dim, hidden_sizes, activation)
        self.v_head = nn.Linear(last_dim, 1)

    def forward(self, x):
        x = self.body(x)
        v = self.v_head(x)
        return v
