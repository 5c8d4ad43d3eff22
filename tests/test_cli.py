"""Tests for the racega-train command line."""
import json

import pytest
import yaml

from racega.cli import build_parser, collect_overrides, main


def write_config(path, output_dir, **genetic):
    payload = {
        "track": {"semi_major": 40.0, "semi_minor": 25.0, "checkpoint_count": 12},
        "genetic": {"population_size": 4, "elite_count": 1, "episodes_per_generation": 1, "max_generations": 1},
        "coordinator": {"max_simultaneous_agents": 2},
        "episode": {"timestep": 0.05},
        "policy": {"name": "pursuit"},
        "logging": {"output_dir": str(output_dir), "run_name": "cli"},
    }
    payload["genetic"].update(genetic)
    path.write_text(yaml.safe_dump(payload))
    return path


class TestCollectOverrides:
    def test_no_flags_no_overrides(self):
        assert collect_overrides(build_parser().parse_args([])) == {}

    def test_flags_map_to_sections(self):
        args = build_parser().parse_args(
            [
                "--generations", "3",
                "--population-size", "12",
                "--max-agents", "4",
                "--policy", "pursuit",
                "--output-dir", "out",
                "--no-console",
            ]
        )
        assert collect_overrides(args) == {
            "genetic": {"max_generations": 3, "population_size": 12},
            "coordinator": {"max_simultaneous_agents": 4},
            "policy": {"name": "pursuit"},
            "logging": {"output_dir": "out", "console": False},
        }


class TestMain:
    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.yaml")]) == 2
        assert "configuration error" in capsys.readouterr().err

    def test_out_of_range_value(self, tmp_path, capsys):
        cfg = write_config(tmp_path / "bad.yaml", tmp_path, population_size=1)
        assert main(["--config", str(cfg)]) == 2
        assert "population_size" in capsys.readouterr().err

    def test_out_of_range_flag(self, tmp_path):
        cfg = write_config(tmp_path / "train.yaml", tmp_path)
        assert main(["--config", str(cfg), "--mutation-rate", "1.5", "--no-console"]) == 2

    def test_short_run(self, tmp_path, capsys):
        cfg = write_config(tmp_path / "train.yaml", tmp_path / "runs")

        code = main(["--config", str(cfg), "--max-ticks", "40", "--no-console", "--seed", "3"])

        assert code == 0
        assert "Completed 0 generation(s)" in capsys.readouterr().out
        summary = json.loads((tmp_path / "runs" / "cli" / "summary.json").read_text())
        assert summary["ticks"] == 40
        snapshot = json.loads((tmp_path / "runs" / "cli" / "config_snapshot.json").read_text())
        assert snapshot["config"]["genetic"]["seed"] == 3
        assert snapshot["config"]["logging"]["console"] is False
