"""Bounded PPO hyperparameters and their genetic operators."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Any, Dict, List, Mapping

import numpy as np

from racega.errors import ConfigurationError


class Activation(IntEnum):
    TANH = 0
    RELU = 1


MULTIPLICATIVE = "multiplicative"
ADDITIVE = "additive"
POWER_OF_TWO = "power_of_two"


@dataclass(frozen=True)
class ParamSpec:
    """Inclusive range and mutation style of one scalar hyperparameter."""

    low: float
    high: float
    mode: str
    integer: bool = False
    step: float = 0.0

    def clamp(self, value: float) -> float:
        value = min(max(float(value), self.low), self.high)
        if self.mode == POWER_OF_TWO:
            value = 2.0 ** round(math.log2(max(value, 1.0)))
            value = min(max(value, self.low), self.high)
        if self.integer:
            return int(round(value))
        return value


PARAM_SPECS: Dict[str, ParamSpec] = {
    "learning_rate": ParamSpec(1.0e-4, 1.0e-2, MULTIPLICATIVE),
    "gamma": ParamSpec(0.8, 0.999, ADDITIVE, step=0.05),
    "gae_lambda": ParamSpec(0.8, 0.999, ADDITIVE, step=0.05),
    "clip_epsilon": ParamSpec(0.1, 0.3, ADDITIVE, step=0.05),
    "num_epochs": ParamSpec(1, 10, ADDITIVE, integer=True),
    "batch_size": ParamSpec(32, 2048, POWER_OF_TWO, integer=True),
    "buffer_size": ParamSpec(256, 10240, MULTIPLICATIVE, integer=True),
    "entropy_coef": ParamSpec(0.0, 0.1, ADDITIVE, step=0.005),
    "value_coef": ParamSpec(0.5, 1.0, ADDITIVE, step=0.1),
}

HIDDEN_UNIT_RANGE = (16, 1024)
LAYER_COUNT_RANGE = (1, 4)

# Relative probabilities of the structural mutations.
LAYER_MUTATION_SCALE = 0.5
ACTIVATION_FLIP_SCALE = 0.2


def _default_hidden_units() -> List[int]:
    return [128, 64]


@dataclass
class Hyperparameters:
    """Optimizer configuration handed directly to a policy implementation."""

    learning_rate: float = 3.0e-4
    gamma: float = 0.99
    gae_lambda: float = 0.95
    clip_epsilon: float = 0.2
    num_epochs: int = 4
    batch_size: int = 64
    buffer_size: int = 2048
    entropy_coef: float = 0.01
    value_coef: float = 0.5
    hidden_units: List[int] = field(default_factory=_default_hidden_units)
    activation: Activation = Activation.RELU

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Hyperparameters":
        """Build from config values, rejecting unknown keys and out-of-range values."""

        instance = cls()
        known = {f.name for f in fields(cls)}
        for key, raw in data.items():
            if key not in known:
                raise ConfigurationError(f"hyperparameters.{key} is not a recognised hyperparameter")
            if key == "hidden_units":
                try:
                    widths = [int(v) for v in raw]
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(f"hyperparameters.hidden_units must be a list of ints: {raw!r}") from exc
                instance.hidden_units = widths
                continue
            if key == "activation":
                instance.activation = _parse_activation(raw)
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"hyperparameters.{key}={raw!r} is not numeric") from exc
            setattr(instance, key, value)

        problems = instance.violations()
        if problems:
            raise ConfigurationError("; ".join(f"hyperparameters.{p}" for p in problems))
        # In range but possibly off-grid (e.g. batch_size 100); snap.
        instance.clamp()
        return instance

    # ------------------------------------------------------------------
    # Range maintenance
    # ------------------------------------------------------------------
    def violations(self) -> List[str]:
        problems: List[str] = []
        for name, spec in PARAM_SPECS.items():
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < spec.low or value > spec.high:
                problems.append(f"{name}={value!r} outside [{spec.low}, {spec.high}]")
        low, high = LAYER_COUNT_RANGE
        if not low <= len(self.hidden_units) <= high:
            problems.append(f"hidden_units has {len(self.hidden_units)} layers, expected {low}..{high}")
        w_low, w_high = HIDDEN_UNIT_RANGE
        for width in self.hidden_units:
            if not w_low <= width <= w_high:
                problems.append(f"hidden_units width {width} outside [{w_low}, {w_high}]")
        if not isinstance(self.activation, Activation):
            problems.append(f"activation={self.activation!r} is not an Activation")
        return problems

    def is_valid(self) -> bool:
        return not self.violations()

    def clamp(self) -> None:
        for name, spec in PARAM_SPECS.items():
            setattr(self, name, spec.clamp(getattr(self, name)))
        w_low, w_high = HIDDEN_UNIT_RANGE
        widths = [int(min(max(round(w), w_low), w_high)) for w in self.hidden_units]
        if not widths:
            widths = _default_hidden_units()
        self.hidden_units = widths[: LAYER_COUNT_RANGE[1]]
        self.activation = Activation(int(self.activation))

    def clone(self) -> "Hyperparameters":
        copy = Hyperparameters(**{name: getattr(self, name) for name in PARAM_SPECS})
        copy.hidden_units = list(self.hidden_units)
        copy.activation = self.activation
        return copy

    # ------------------------------------------------------------------
    # Genetic operators
    # ------------------------------------------------------------------
    def mutate(self, rate: float, magnitude: float, rng: np.random.Generator) -> None:
        """Perturb each field with probability ``rate``; re-clamps afterwards."""

        m = float(magnitude)
        for name, spec in PARAM_SPECS.items():
            if rng.random() >= rate:
                continue
            value = float(getattr(self, name))
            if spec.mode == MULTIPLICATIVE:
                value *= rng.uniform(1.0 - m, 1.0 + m)
            elif spec.mode == POWER_OF_TWO:
                value *= 2.0 ** (rng.uniform(-1.0, 1.0) * (1.0 + m))
            elif spec.integer:
                span = max(1, int(round(2.0 * m)))
                value += int(rng.integers(-span, span + 1))
            else:
                value += rng.uniform(-1.0, 1.0) * spec.step * m
            setattr(self, name, value)

        for i, width in enumerate(self.hidden_units):
            if rng.random() < rate * LAYER_MUTATION_SCALE:
                self.hidden_units[i] = int(round(width * rng.uniform(1.0 - m, 1.0 + m)))

        if rng.random() < rate * ACTIVATION_FLIP_SCALE:
            self.activation = Activation.TANH if self.activation == Activation.RELU else Activation.RELU

        self.clamp()

    @classmethod
    def crossover(
        cls,
        parent1: "Hyperparameters",
        parent2: "Hyperparameters",
        rng: np.random.Generator,
    ) -> "Hyperparameters":
        """Uniform crossover of scalars with per-layer choice-or-blend of widths."""

        child = cls()
        for name in PARAM_SPECS:
            source = parent1 if rng.random() < 0.5 else parent2
            setattr(child, name, getattr(source, name))
        child.activation = parent1.activation if rng.random() < 0.5 else parent2.activation

        layers = min(len(parent1.hidden_units), len(parent2.hidden_units))
        widths: List[int] = []
        for i in range(layers):
            a = parent1.hidden_units[i]
            b = parent2.hidden_units[i]
            if rng.random() < 0.5:
                width = a if rng.random() < 0.5 else b
            else:
                weight = rng.random()
                width = int(round(a * weight + b * (1.0 - weight)))
            widths.append(max(HIDDEN_UNIT_RANGE[0], width))
        child.hidden_units = widths
        child.clamp()
        return child

    # ------------------------------------------------------------------
    # Serialisation / comparison
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: getattr(self, name) for name in PARAM_SPECS}
        payload["hidden_units"] = list(self.hidden_units)
        payload["activation"] = self.activation.name.lower()
        return payload

    def normalized_vector(self) -> np.ndarray:
        """Scalars mapped to [0, 1] (learning rate in log space) plus activation."""

        values = []
        for name, spec in PARAM_SPECS.items():
            value = float(getattr(self, name))
            if spec.mode == MULTIPLICATIVE and name == "learning_rate":
                low, high, value = math.log(spec.low), math.log(spec.high), math.log(value)
            else:
                low, high = spec.low, spec.high
            values.append((value - low) / (high - low))
        values.append(float(self.activation))
        return np.asarray(values, dtype=np.float64)


def _parse_activation(raw: Any) -> Activation:
    if isinstance(raw, Activation):
        return raw
    if isinstance(raw, str):
        try:
            return Activation[raw.strip().upper()]
        except KeyError as exc:
            raise ConfigurationError(f"hyperparameters.activation={raw!r} must be tanh or relu") from exc
    try:
        return Activation(int(raw))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"hyperparameters.activation={raw!r} must be 0 (tanh) or 1 (relu)") from exc


__all__ = [
    "Activation",
    "HIDDEN_UNIT_RANGE",
    "Hyperparameters",
    "LAYER_COUNT_RANGE",
    "PARAM_SPECS",
    "ParamSpec",
]
