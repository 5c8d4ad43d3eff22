"""Tests for YAML configuration loading, validation and overrides."""
import pytest
import yaml

from racega.errors import ConfigurationError
from racega.genetic.hyperparameters import Activation
from racega.utils.config import DEFAULT_ENV_CONFIG_KEY, TrainingConfig, load_config, load_yaml


def write_config(tmp_path, data, name="config.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Loading the shipped file and user files."""

    def test_shipped_config_loads(self, project_root):
        cfg, path = load_config(project_root / "configs" / "genetic_ppo.yaml")

        assert path.name == "genetic_ppo.yaml"
        assert cfg.genetic.population_size == 10
        assert cfg.coordinator.max_simultaneous_agents == 5
        assert cfg.progress.policy == "strict"
        assert cfg.policy.name == "ppo"
        hyper = cfg.default_hyperparameters()
        assert hyper.hidden_units == [128, 64]
        assert hyper.activation is Activation.RELU

    def test_missing_sections_use_defaults(self, tmp_path):
        cfg, _ = load_config(write_config(tmp_path, {"genetic": {"population_size": 4}}))
        assert cfg.genetic.population_size == 4
        assert cfg.genetic.elite_count == 2
        assert cfg.track.checkpoint_count == 24

    def test_environment_variable_points_at_the_file(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"episode": {"timestep": 0.05}})
        monkeypatch.setenv(DEFAULT_ENV_CONFIG_KEY, str(path))

        cfg, resolved = load_config()

        assert resolved == path.resolve()
        assert cfg.episode.timestep == pytest.approx(0.05)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "nope.yaml")

    def test_top_level_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_yaml(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("genetic: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_yaml(path)


class TestValidation:
    """Every declared range is enforced when the file is read."""

    @pytest.mark.parametrize(
        "data",
        [
            {"genetic": {"mutation_rate": 1.5}},
            {"genetic": {"population_size": 1}},
            {"genetic": {"population_size": 2.5}},
            {"genetic": {"population_size": 4, "elite_count": 5}},
            {"coordinator": {"max_simultaneous_agents": 0}},
            {"episode": {"timestep": float("nan")}},
            {"progress": {"policy": "sloppy"}},
            {"safety": {"off_track_policy": "ignore"}},
            {"policy": {"name": "dqn"}},
            {"hyperparameters": {"gamma": 3.0}},
            {"hyperparameters": [1, 2]},
            {"genetic": "fast"},
            {"mystery": {}},
        ],
    )
    def test_invalid_values_are_rejected(self, data):
        with pytest.raises(ConfigurationError):
            TrainingConfig.from_dict(data)

    def test_unknown_keys_are_kept_as_extras(self):
        cfg = TrainingConfig.from_dict({"track": {"surface": "gravel"}})
        assert cfg.track.extras == {"surface": "gravel"}
        assert cfg.track.get("surface") == "gravel"
        assert cfg.to_dict()["track"]["surface"] == "gravel"

    def test_values_are_coerced(self):
        cfg = TrainingConfig.from_dict(
            {"logging": {"console": "no"}, "genetic": {"population_size": "12"}, "vehicle": {"ray_angles_deg": [0, 90]}}
        )
        assert cfg.logging.console is False
        assert cfg.genetic.population_size == 12
        assert cfg.vehicle.ray_angles_deg == [0.0, 90.0]

    def test_ray_angles_are_bounded(self):
        with pytest.raises(ConfigurationError):
            TrainingConfig.from_dict({"vehicle": {"ray_angles_deg": [0, 200]}})

    def test_to_dict_reloads(self):
        cfg = TrainingConfig.from_dict({"genetic": {"seed": 5}, "hyperparameters": {"batch_size": 128}})
        assert TrainingConfig.from_dict(cfg.to_dict()).to_dict() == cfg.to_dict()


class TestOverrides:
    """Command-line style overrides are validated like file values."""

    def test_override_applies(self):
        cfg = TrainingConfig()
        cfg.apply_overrides({"genetic": {"population_size": 20}, "policy": {"name": "pursuit"}})
        assert cfg.genetic.population_size == 20
        assert cfg.policy.name == "pursuit"

    def test_out_of_range_override(self):
        cfg = TrainingConfig()
        with pytest.raises(ConfigurationError):
            cfg.apply_overrides({"coordinator": {"max_simultaneous_agents": 500}})

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError):
            TrainingConfig().apply_overrides({"bogus": {"x": 1}})

    def test_hyperparameter_override(self):
        cfg = TrainingConfig()
        cfg.apply_overrides({"hyperparameters": {"learning_rate": 1.0e-3}})
        assert cfg.default_hyperparameters().learning_rate == pytest.approx(1.0e-3)
        with pytest.raises(ConfigurationError):
            cfg.apply_overrides({"hyperparameters": {"learning_rate": 1.0}})

    def test_empty_overrides_are_skipped(self):
        cfg = TrainingConfig()
        cfg.apply_overrides({"genetic": {}})
        assert cfg.genetic.population_size == 10
