"""Shared helpers for loading training configuration files."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from racega.errors import ConfigurationError
from racega.genetic.hyperparameters import Hyperparameters
from racega.utils.config_schema import (
    CoordinatorSchema,
    EpisodeSchema,
    FitnessSchema,
    GeneticSchema,
    LoggingSchema,
    PolicySchema,
    ProgressSchema,
    RewardSchema,
    SafetySchema,
    SchemaError,
    TrackSchema,
    VehicleSchema,
)


DEFAULT_ENV_CONFIG_KEY = "RACEGA_CONFIG"
DEFAULT_CONFIG_PATH = Path("configs") / "genetic_ppo.yaml"


@dataclass
class TrainingConfig:
    """All validated sections of a training run."""

    track: TrackSchema = field(default_factory=TrackSchema)
    genetic: GeneticSchema = field(default_factory=GeneticSchema)
    fitness: FitnessSchema = field(default_factory=FitnessSchema)
    coordinator: CoordinatorSchema = field(default_factory=CoordinatorSchema)
    episode: EpisodeSchema = field(default_factory=EpisodeSchema)
    progress: ProgressSchema = field(default_factory=ProgressSchema)
    safety: SafetySchema = field(default_factory=SafetySchema)
    reward: RewardSchema = field(default_factory=RewardSchema)
    vehicle: VehicleSchema = field(default_factory=VehicleSchema)
    policy: PolicySchema = field(default_factory=PolicySchema)
    logging: LoggingSchema = field(default_factory=LoggingSchema)
    hyperparameters: Dict[str, Any] = field(default_factory=dict)

    _SECTIONS = (
        ("track", TrackSchema),
        ("genetic", GeneticSchema),
        ("fitness", FitnessSchema),
        ("coordinator", CoordinatorSchema),
        ("episode", EpisodeSchema),
        ("progress", ProgressSchema),
        ("safety", SafetySchema),
        ("reward", RewardSchema),
        ("vehicle", VehicleSchema),
        ("policy", PolicySchema),
        ("logging", LoggingSchema),
    )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TrainingConfig":
        data = dict(data or {})
        known = {name for name, _ in cls._SECTIONS} | {"hyperparameters"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SchemaError(f"Unknown configuration section(s): {', '.join(unknown)}")

        sections = {name: schema.from_dict(data.get(name)) for name, schema in cls._SECTIONS}
        hyper = data.get("hyperparameters") or {}
        if not isinstance(hyper, Mapping):
            raise SchemaError("hyperparameters section must be a mapping")

        config = cls(hyperparameters=dict(hyper), **sections)
        # Range-check hyperparameter defaults eagerly so bad values fail at load time.
        config.default_hyperparameters()
        return config

    def apply_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> None:
        """Merge ``{section: {key: value}}`` overrides and re-validate touched sections."""

        for section_name, values in overrides.items():
            if not values:
                continue
            if section_name == "hyperparameters":
                self.hyperparameters.update(values)
                self.default_hyperparameters()
                continue
            section = getattr(self, section_name, None)
            if section is None or section_name.startswith("_"):
                raise SchemaError(f"Unknown configuration section: {section_name}")
            section.update_from_dict(values)
            section.validate()

    def default_hyperparameters(self) -> Hyperparameters:
        return Hyperparameters.from_mapping(self.hyperparameters)

    def to_dict(self) -> Dict[str, Any]:
        payload = {name: getattr(self, name).to_dict() for name, _ in self._SECTIONS}
        payload["hyperparameters"] = dict(self.hyperparameters)
        return payload


def resolve_config_path(
    cfg_path: Path | str | None,
    *,
    default_path: Path | str = DEFAULT_CONFIG_PATH,
    env_key: str = DEFAULT_ENV_CONFIG_KEY,
) -> Path:
    """Resolve the configuration path, honouring env overrides and defaults."""

    explicit_path: Optional[Path]
    if cfg_path is not None:
        explicit_path = Path(cfg_path)
    else:
        env_value = os.environ.get(env_key)
        explicit_path = Path(env_value) if env_value else None

    if explicit_path is None:
        explicit_path = Path(default_path)

    resolved = explicit_path.expanduser().resolve()
    if not resolved.exists():
        raise ConfigurationError(f"Config file not found: {resolved}")
    return resolved


def load_yaml(path: Path | str) -> Dict[str, Any]:
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_config(
    cfg_path: Path | str | None = None,
    *,
    default_path: Path | str = DEFAULT_CONFIG_PATH,
    env_config_key: str = DEFAULT_ENV_CONFIG_KEY,
) -> tuple[TrainingConfig, Path]:
    """Load and validate a :class:`TrainingConfig` from YAML.

    Returns the parsed configuration together with the resolved path.
    """

    resolved_path = resolve_config_path(cfg_path, default_path=default_path, env_key=env_config_key)
    return TrainingConfig.from_dict(load_yaml(resolved_path)), resolved_path


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_ENV_CONFIG_KEY",
    "TrainingConfig",
    "load_config",
    "load_yaml",
    "resolve_config_path",
]
