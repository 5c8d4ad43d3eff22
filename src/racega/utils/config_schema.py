"""Typed configuration schema definitions with centralised defaults and ranges."""
from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints

from racega.errors import ConfigurationError

T = TypeVar("T", bound="BaseSchema")


def bounded(default: Any, low: float, high: float) -> Any:
    """Dataclass field carrying an inclusive ``[low, high]`` validation range."""

    return field(default=default, metadata={"range": (low, high)})


def choice(default: str, *options: str) -> Any:
    return field(default=default, metadata={"choices": tuple(options)})


def _default_ray_angles() -> List[float]:
    return [-110.0, -75.0, -45.0, -20.0, 0.0, 20.0, 45.0, 75.0, 110.0]


class SchemaError(ConfigurationError):
    """Raised when configuration coercion or range validation fails."""


@dataclass
class BaseSchema:
    """Base class handling typed coercion, range checks and extra-key capture."""

    SECTION: ClassVar[str] = ""

    extras: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls: Type[T], data: Optional[Mapping[str, Any]]) -> T:
        instance = cls()  # type: ignore[call-arg]
        if data:
            instance.update_from_dict(data)
        instance.validate()
        return instance

    # Conversion helpers -------------------------------------------------
    def update_from_dict(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise SchemaError(f"{self._label()} section must be a mapping, got {type(data).__name__}")
        field_map = {f.name: f for f in fields(self)}
        hints = get_type_hints(type(self))
        for key, value in data.items():
            if key == "extras":
                continue
            field_info = field_map.get(key)
            if field_info is None:
                self.extras[key] = value
                continue
            try:
                coerced = _coerce_value(hints.get(key, field_info.type), value)
            except SchemaError as exc:
                raise SchemaError(f"{self._label()}.{key}: {exc}") from exc
            setattr(self, key, coerced)

    def validate(self) -> None:
        """Check every field that declares a range or a set of choices."""

        for f in fields(self):
            value = getattr(self, f.name)
            bounds = f.metadata.get("range")
            if bounds is not None and value is not None:
                low, high = bounds
                number = float(value)
                if not math.isfinite(number) or number < low or number > high:
                    raise SchemaError(
                        f"{self._label()}.{f.name}={value!r} outside allowed range [{low}, {high}]"
                    )
            options = f.metadata.get("choices")
            if options is not None and value not in options:
                raise SchemaError(
                    f"{self._label()}.{f.name}={value!r} must be one of {', '.join(options)}"
                )

    def to_dict(self) -> Dict[str, Any]:
        payload = {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self) if f.name != "extras"}
        payload.update(copy.deepcopy(self.extras))
        return payload

    def get(self, key: str, default: Any = None) -> Any:
        if hasattr(self, key):
            return getattr(self, key)
        return self.extras.get(key, default)

    def _label(self) -> str:
        return self.SECTION or type(self).__name__


def _strip_optional(annotation: Any) -> Any:
    if get_origin(annotation) is Union:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]  # noqa: E721
        return args[0] if len(args) == 1 else Any
    return annotation


def _coerce_number(kind: type, value: Any) -> Any:
    if isinstance(value, bool):
        raise SchemaError(f"Could not coerce value {value!r} to {kind.__name__}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"Could not coerce value {value!r} to {kind.__name__}") from exc
    if kind is int:
        if not number.is_integer():
            raise SchemaError(f"Could not coerce value {value!r} to int")
        return int(number)
    return number


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "y", "1", "on"}:
            return True
        if lowered in {"false", "no", "n", "0", "off"}:
            return False
        raise SchemaError(f"Cannot coerce string '{value}' to bool")
    return bool(value)


def _coerce_value(annotation: Any, value: Any) -> Any:
    """Coerce a raw YAML/CLI value to a schema field's declared type."""

    if value is None:
        return None
    annotation = _strip_optional(annotation)
    if get_origin(annotation) in (list, List):
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise SchemaError(f"expected a list, got {value!r}")
        (elem_type,) = get_args(annotation) or (Any,)
        return [_coerce_value(elem_type, item) for item in value]
    if annotation in (int, float):
        return _coerce_number(annotation, value)
    if annotation is bool:
        return _coerce_bool(value)
    if annotation is str:
        return str(value)
    return value



@dataclass
class TrackSchema(BaseSchema):
    SECTION: ClassVar[str] = "track"

    csv: Optional[str] = None
    semi_major: float = bounded(60.0, 1.0, 1.0e4)
    semi_minor: float = bounded(35.0, 1.0, 1.0e4)
    checkpoint_count: int = bounded(24, 3, 1000)
    track_width: float = bounded(10.0, 0.5, 100.0)


@dataclass
class GeneticSchema(BaseSchema):
    SECTION: ClassVar[str] = "genetic"

    population_size: int = bounded(10, 2, 1000)
    elite_count: int = bounded(2, 0, 1000)
    episodes_per_generation: int = bounded(5, 1, 1000)
    mutation_rate: float = bounded(0.1, 0.0, 1.0)
    mutation_magnitude: float = bounded(0.2, 0.0, 2.0)
    crossover_rate: float = bounded(0.7, 0.0, 1.0)
    tournament_size: int = bounded(3, 1, 100)
    initial_mutation_rate: float = bounded(0.5, 0.0, 1.0)
    initial_mutation_magnitude: float = bounded(0.3, 0.0, 2.0)
    max_generations: int = bounded(50, 1, 1_000_000)
    seed: Optional[int] = None
    strict_invariants: bool = True

    def validate(self) -> None:  # type: ignore[override]
        super().validate()
        if self.elite_count > self.population_size:
            raise SchemaError(
                f"{self._label()}.elite_count={self.elite_count} exceeds population_size={self.population_size}"
            )


@dataclass
class FitnessSchema(BaseSchema):
    SECTION: ClassVar[str] = "fitness"

    w_speed: float = bounded(1.0, 0.0, 1.0e4)
    w_checkpoint: float = bounded(5.0, 0.0, 1.0e4)
    w_lap: float = bounded(10.0, 0.0, 1.0e4)
    min_episode_duration: float = bounded(0.1, 1.0e-3, 10.0)


@dataclass
class CoordinatorSchema(BaseSchema):
    SECTION: ClassVar[str] = "coordinator"

    max_simultaneous_agents: int = bounded(5, 1, 256)
    lane_spacing: float = bounded(2.0, 0.0, 50.0)
    spawn_lanes: int = bounded(3, 1, 9)


@dataclass
class EpisodeSchema(BaseSchema):
    SECTION: ClassVar[str] = "episode"

    timestep: float = bounded(0.02, 1.0e-3, 1.0)
    max_episode_time: float = bounded(120.0, 1.0, 1.0e5)
    checkpoint_timeout: float = bounded(30.0, 1.0, 1.0e5)
    laps_per_episode: int = bounded(1, 1, 100)
    terminate_on_collision: bool = True
    max_consecutive_faults: int = bounded(50, 1, 1_000_000)


@dataclass
class ProgressSchema(BaseSchema):
    SECTION: ClassVar[str] = "progress"

    policy: str = choice("strict", "strict", "lenient")
    behind_tolerance: int = bounded(2, 0, 1000)
    grace_period: float = bounded(0.2, 0.0, 10.0)


@dataclass
class SafetySchema(BaseSchema):
    SECTION: ClassVar[str] = "safety"

    ground_check_delay: float = bounded(0.5, 0.0, 60.0)
    ground_probe_distance: float = bounded(1.0, 0.0, 100.0)
    max_tilt_deg: float = bounded(60.0, 0.0, 180.0)
    off_track_policy: str = choice("respawn", "respawn", "terminate")
    respawn_delay: float = bounded(0.5, 0.0, 60.0)
    respawn_penalty: float = bounded(0.0, -100.0, 0.0)


@dataclass
class RewardSchema(BaseSchema):
    SECTION: ClassVar[str] = "reward"

    optimal_speed_multiplier: float = bounded(0.7, 0.05, 1.0)
    min_reference_speed: float = bounded(5.0, 0.1, 1.0e3)
    speed_reward_factor: float = bounded(0.5, 0.0, 100.0)
    reverse_penalty: float = bounded(-0.2, -100.0, 0.0)
    reverse_duration_threshold: float = bounded(1.0, 0.0, 60.0)
    min_speed_threshold: float = bounded(1.0, 0.0, 100.0)
    stationary_timeout: float = bounded(3.0, 0.0, 600.0)
    stationary_penalty: float = bounded(-5.0, -1.0e3, 0.0)
    checkpoint_progress_factor: float = bounded(0.1, 0.0, 100.0)
    alignment_reward_factor: float = bounded(0.5, 0.0, 100.0)
    progress_check_interval: float = bounded(5.0, 0.1, 600.0)
    circling_distance_threshold: float = bounded(10.0, 0.0, 1.0e4)
    circling_efficiency_floor: float = bounded(0.1, 0.0, 1.0)
    circling_penalty: float = bounded(-0.2, -100.0, 0.0)
    wall_optimal_distance: float = bounded(1.0, 0.01, 100.0)
    wall_max_distance: float = bounded(2.5, 0.01, 100.0)
    wall_proximity_factor: float = bounded(0.0, 0.0, 100.0)
    checkpoint_reward: float = bounded(1.0, 0.0, 1.0e3)
    checkpoint_index_bonus: float = bounded(0.5, 0.0, 1.0e3)
    lap_reward: float = bounded(10.0, 0.0, 1.0e4)
    wrong_checkpoint_penalty: float = bounded(-1.0, -1.0e4, 0.0)
    collision_penalty: float = bounded(-1.0, -1.0e4, 0.0)
    maturity_laps: int = bounded(100, 0, 10_000_000)
    time_penalty: float = bounded(-0.05, -100.0, 0.0)
    brake_penalty: float = bounded(-0.5, -100.0, 0.0)
    brake_threshold: float = bounded(0.1, 0.0, 1.0)
    brake_speed_threshold: float = bounded(5.0, 0.0, 1.0e3)


@dataclass
class VehicleSchema(BaseSchema):
    SECTION: ClassVar[str] = "vehicle"

    max_speed: float = bounded(30.0, 0.1, 500.0)
    max_reverse_speed: float = bounded(5.0, 0.0, 100.0)
    max_accel: float = bounded(12.0, 0.1, 200.0)
    max_brake: float = bounded(25.0, 0.1, 500.0)
    max_steer_deg: float = bounded(30.0, 1.0, 80.0)
    wheelbase: float = bounded(2.6, 0.1, 20.0)
    drag: float = bounded(0.05, 0.0, 10.0)
    ray_angles_deg: List[float] = field(default_factory=_default_ray_angles)
    ray_range: float = bounded(30.0, 0.5, 1.0e3)
    distance_scale: float = bounded(100.0, 1.0, 1.0e5)

    def validate(self) -> None:  # type: ignore[override]
        super().validate()
        for angle in self.ray_angles_deg:
            if not -180.0 <= float(angle) <= 180.0:
                raise SchemaError(f"{self._label()}.ray_angles_deg entry {angle!r} outside [-180, 180]")


@dataclass
class PolicySchema(BaseSchema):
    SECTION: ClassVar[str] = "policy"

    name: str = choice("ppo", "ppo", "pursuit")
    device: Optional[str] = "cpu"
    max_grad_norm: float = bounded(0.5, 0.0, 100.0)
    log_std_init: float = bounded(-0.5, -5.0, 2.0)
    target_speed: float = bounded(15.0, 0.0, 500.0)
    steer_gain: float = bounded(2.0, 0.0, 50.0)


@dataclass
class LoggingSchema(BaseSchema):
    SECTION: ClassVar[str] = "logging"

    output_dir: str = "runs"
    run_name: Optional[str] = None
    console: bool = True
    records: bool = True
    wandb: bool = False
    wandb_project: str = "racega"
    wandb_entity: Optional[str] = None
    snapshot_interval: float = bounded(30.0, 0.1, 1.0e6)
    best_snapshot_every: int = bounded(1, 1, 1_000_000)
    model_save_every: int = bounded(10, 1, 1_000_000)


__all__ = [
    "BaseSchema",
    "CoordinatorSchema",
    "EpisodeSchema",
    "FitnessSchema",
    "GeneticSchema",
    "LoggingSchema",
    "PolicySchema",
    "ProgressSchema",
    "RewardSchema",
    "SafetySchema",
    "SchemaError",
    "TrackSchema",
    "VehicleSchema",
    "bounded",
    "choice",
]
