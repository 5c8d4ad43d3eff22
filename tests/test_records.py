"""Tests for CSV and JSON training records."""
import csv
import json

from racega.events import LapCompleted
from racega.genetic.genome import Genome
from racega.genetic.hyperparameters import Hyperparameters
from racega.genetic.population import GenerationSummary
from racega.loggers import TrainingRecordWriter
from racega.loggers.records import GENERATION_FIELDS, LAP_FIELDS, SNAPSHOT_FIELDS
from racega.metrics import LapRecord


def read_rows(path):
    with open(path, newline="") as handle:
        return list(csv.DictReader(handle))


def summary(generation=3):
    return GenerationSummary(
        generation=generation,
        avg_fitness=10.0,
        max_fitness=25.0,
        avg_checkpoints=8.0,
        total_laps=4,
        avg_speed=12.5,
        best_agent_id=7,
        best_hyperparameters=Hyperparameters().to_dict(),
    )


class TestTrainingRecordWriter:
    """Each table is written incrementally and readable while the run continues."""

    def test_laps_from_the_bus(self, tmp_path, bus):
        writer = TrainingRecordWriter(tmp_path)
        writer.attach(bus)
        bus.publish(LapCompleted(5, 1, 21.5, 14.0, 301.0))

        rows = read_rows(tmp_path / "lap_records.csv")
        assert list(rows[0]) == list(LAP_FIELDS)
        assert rows[0]["agent_id"] == "5"
        assert float(rows[0]["lap_time"]) == 21.5

        writer.close()
        bus.publish(LapCompleted(5, 2, 20.0, 15.0, 300.0))
        assert len(read_rows(tmp_path / "lap_records.csv")) == 1

    def test_direct_lap_rows_append(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        writer.write_lap(LapRecord(1, 1, 10.0, 5.0, 50.0))
        writer.write_lap(LapRecord(1, 2, 9.0, 5.5, 49.5))
        writer.close()
        assert [row["lap_number"] for row in read_rows(tmp_path / "lap_records.csv")] == ["1", "2"]

    def test_generation_rows(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        writer.write_generation(summary(1))
        writer.write_generation(summary(2))
        writer.close()

        rows = read_rows(tmp_path / "training_metrics.csv")
        assert list(rows[0]) == list(GENERATION_FIELDS)
        assert [row["generation"] for row in rows] == ["1", "2"]
        assert float(rows[0]["max_fitness"]) == 25.0

    def test_population_snapshot(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        genomes = [Genome(fitness=1.0), Genome(fitness=2.0)]

        written = writer.write_population_snapshot(genomes, generation=2, episode=3, time=12.345678)
        writer.close()

        rows = read_rows(tmp_path / "population_snapshots.csv")
        assert written == 2
        assert list(rows[0]) == list(SNAPSHOT_FIELDS)
        assert [int(row["agent_id"]) for row in rows] == [g.agent_id for g in genomes]
        assert rows[0]["time"] == "12.3457"

    def test_best_params(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        path = writer.write_best_params(summary(3))

        assert path == tmp_path / "best_params_gen3.json"
        payload = json.loads(path.read_text())
        assert payload["generation"] == 3
        assert payload["agent_id"] == 7
        assert payload["fitness"] == 25.0
        assert payload["hyperparameters"]["batch_size"] == 64

    def test_config_and_summary_documents(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        writer.save_config_snapshot({"genetic": {"population_size": 4}})
        writer.save_summary({"generations_completed": 2})

        config = json.loads((tmp_path / "config_snapshot.json").read_text())
        done = json.loads((tmp_path / "summary.json").read_text())
        assert config["config"]["genetic"]["population_size"] == 4
        assert "timestamp" in config
        assert done["generations_completed"] == 2
        assert "timestamp" in done

    def test_disabled_writer_touches_nothing(self, tmp_path, bus):
        out = tmp_path / "run"
        writer = TrainingRecordWriter(out, enabled=False)
        writer.attach(bus)
        bus.publish(LapCompleted(1, 1, 10.0, 5.0))
        writer.write_generation(summary())

        assert writer.write_best_params(summary()) is None
        assert writer.save_summary({}) is None
        assert writer.write_population_snapshot([Genome()], generation=1, episode=1, time=0.0) == 0
        writer.close()
        assert not out.exists()

    def test_nothing_is_created_before_the_first_row(self, tmp_path):
        writer = TrainingRecordWriter(tmp_path)
        writer.close()
        assert not (tmp_path / "lap_records.csv").exists()
