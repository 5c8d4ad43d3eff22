"""CSV and JSON training records.

Files written under the run's output directory:
    - lap_records.csv          # One row per completed lap, append only
    - training_metrics.csv     # One row per generation
    - population_snapshots.csv # Periodic per-genome snapshot
    - best_params_gen{N}.json  # Best genome of generation N
    - config_snapshot.json     # Full run configuration
    - summary.json             # Final training summary
"""

from __future__ import annotations

import csv
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Dict, Iterable, Mapping, Optional, Sequence

from racega.events import EventBus, LapCompleted, Subscription
from racega.genetic.genome import Genome
from racega.genetic.population import GenerationSummary
from racega.metrics.tracker import LapRecord

LAP_FIELDS = LapRecord.FIELDS
GENERATION_FIELDS = GenerationSummary.RECORD_FIELDS
SNAPSHOT_FIELDS = (
    "generation",
    "episode",
    "time",
    "agent_id",
    "fitness",
    "checkpoints_passed",
    "laps_completed",
    "avg_speed",
    "episodes_evaluated",
)


class _CsvTable:
    """One CSV file opened on first write, flushed after every row."""

    def __init__(self, path: Path, fieldnames: Sequence[str]) -> None:
        self.path = path
        self.fieldnames = list(fieldnames)
        self._handle: Optional[IO[str]] = None
        self._writer: Optional[csv.DictWriter] = None

    def write(self, row: Mapping[str, Any]) -> None:
        if self._writer is None:
            self._handle = open(self.path, "w", newline="")
            self._writer = csv.DictWriter(self._handle, fieldnames=self.fieldnames, extrasaction="ignore")
            self._writer.writeheader()
        self._writer.writerow(row)
        self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._writer = None


class TrainingRecordWriter:
    """Persists lap, generation and population records for a run.

    Example:
        >>> writer = TrainingRecordWriter("runs/demo")
        >>> writer.attach(bus)
        >>> writer.write_generation(summary)
        >>> writer.write_best_params(summary)
        >>> writer.close()
    """

    def __init__(self, output_dir: Path | str, enabled: bool = True) -> None:
        self.output_dir = Path(output_dir)
        self.enabled = enabled
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None

        if self.enabled:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        self._laps = _CsvTable(self.output_dir / "lap_records.csv", LAP_FIELDS)
        self._generations = _CsvTable(self.output_dir / "training_metrics.csv", GENERATION_FIELDS)
        self._snapshots = _CsvTable(self.output_dir / "population_snapshots.csv", SNAPSHOT_FIELDS)

    # ------------------------------------------------------------------
    # Bus wiring
    # ------------------------------------------------------------------
    def attach(self, bus: EventBus) -> None:
        """Record every :class:`LapCompleted` published on ``bus``."""

        self.detach()
        self._subscription = bus.subscribe(LapCompleted, self._on_lap)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_lap(self, event: LapCompleted) -> None:
        self.write_lap(
            LapRecord(
                agent_id=event.agent_id,
                lap_number=event.lap_number,
                lap_time=event.lap_time,
                avg_speed=event.avg_speed,
                distance=event.distance,
            )
        )

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------
    def write_lap(self, record: LapRecord) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._laps.write(record.to_dict())

    def write_generation(self, summary: GenerationSummary) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._generations.write(summary.record())

    def write_population_snapshot(
        self,
        genomes: Iterable[Genome],
        *,
        generation: int,
        episode: int,
        time: float,
    ) -> int:
        """Append one row per genome; returns the number of rows written."""

        if not self.enabled:
            return 0
        written = 0
        with self._lock:
            for genome in genomes:
                self._snapshots.write(
                    {
                        "generation": generation,
                        "episode": episode,
                        "time": round(float(time), 4),
                        "agent_id": genome.agent_id,
                        "fitness": genome.fitness,
                        "checkpoints_passed": genome.checkpoints_passed,
                        "laps_completed": genome.laps_completed,
                        "avg_speed": genome.avg_speed,
                        "episodes_evaluated": genome.episodes_evaluated,
                    }
                )
                written += 1
        return written

    # ------------------------------------------------------------------
    # JSON documents
    # ------------------------------------------------------------------
    def write_best_params(self, summary: GenerationSummary) -> Optional[Path]:
        """Write ``best_params_gen{N}.json`` with the best genome of generation N."""

        if not self.enabled:
            return None
        payload = {
            "generation": summary.generation,
            "agent_id": summary.best_agent_id,
            "fitness": summary.max_fitness,
            "hyperparameters": dict(summary.best_hyperparameters),
        }
        return self._write_json(f"best_params_gen{summary.generation}.json", payload)

    def save_config_snapshot(self, config: Mapping[str, Any]) -> Optional[Path]:
        if not self.enabled:
            return None
        snapshot = {
            "timestamp": datetime.now().isoformat(),
            "config": dict(config),
        }
        return self._write_json("config_snapshot.json", snapshot)

    def save_summary(self, summary: Mapping[str, Any]) -> Optional[Path]:
        if not self.enabled:
            return None
        payload: Dict[str, Any] = dict(summary)
        payload["timestamp"] = datetime.now().isoformat()
        return self._write_json("summary.json", payload)

    def _write_json(self, name: str, payload: Mapping[str, Any]) -> Path:
        path = self.output_dir / name
        with open(path, "w") as f:
            json.dump(payload, f, indent=2, default=str)
        return path

    def close(self) -> None:
        """Detach from the bus and close CSV files."""

        self.detach()
        with self._lock:
            self._laps.close()
            self._generations.close()
            self._snapshots.close()


__all__ = ["GENERATION_FIELDS", "LAP_FIELDS", "SNAPSHOT_FIELDS", "TrainingRecordWriter"]
