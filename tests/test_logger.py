"""Tests for the logger façade and its sinks."""
import io
import logging
import sys

import pytest
from rich.console import Console

from racega.errors import ConfigurationError
from racega.utils import logger as logger_module
from racega.utils.config_schema import LoggingSchema
from racega.utils.logger import (
    ConsoleSink,
    Logger,
    LogSink,
    NullSink,
    StdlibSink,
    WandbSink,
    build_logger,
    init_wandb_run,
)


class RecordingSink(LogSink):
    def __init__(self, name, journal):
        self.name = name
        self.journal = journal

    def start(self, context):
        self.journal.append((self.name, "start", dict(context)))

    def stop(self):
        self.journal.append((self.name, "stop"))

    def log_metrics(self, phase, metrics, *, step=None):
        self.journal.append((self.name, "metrics", phase, dict(metrics), step))

    def log_event(self, level, message, extra=None):
        self.journal.append((self.name, "event", level, message, extra))


class FakeRun:
    def __init__(self):
        self.logged = []
        self.defined = []
        self.finished = False
        self.config = self

    def update(self, data, allow_val_change=False):
        self.config_data = data

    def define_metric(self, name, step_metric=None):
        self.defined.append((name, step_metric))

    def log(self, payload):
        self.logged.append(payload)

    def finish(self):
        self.finished = True


@pytest.fixture
def journal():
    return []


class TestLogger:
    """Fan-out and lifecycle."""

    def test_start_notifies_sinks_once(self, journal):
        log = Logger([RecordingSink("a", journal)])
        log.start({"run": 1})
        log.start({"extra": 2})
        assert journal == [("a", "start", {"run": 1})]

    def test_metrics_and_events_fan_out(self, journal):
        log = Logger([RecordingSink("a", journal), RecordingSink("b", journal)])
        log.log_metrics("generation", {"x": 1.0}, step=2)
        log.log_metrics("generation", {})
        log.warning("careful", extra={"k": 1})

        assert journal == [
            ("a", "metrics", "generation", {"x": 1.0}, 2),
            ("b", "metrics", "generation", {"x": 1.0}, 2),
            ("a", "event", "warn", "careful", {"k": 1}),
            ("b", "event", "warn", "careful", {"k": 1}),
        ]

    def test_stop_runs_in_reverse_and_only_once(self, journal):
        log = Logger([RecordingSink("a", journal), RecordingSink("b", journal)])
        log.stop()
        assert journal == []

        log.start()
        log.stop()
        log.stop()
        assert journal[-2:] == [("b", "stop"), ("a", "stop")]


class TestConsoleSink:
    """Rendered console output."""

    @pytest.fixture
    def output(self):
        return io.StringIO()

    @pytest.fixture
    def sink(self, output):
        return ConsoleSink(console=Console(file=output, width=120, color_system=None))

    def test_snapshot_line(self, sink, output):
        sink.log_metrics("snapshot", {"avg_fitness": 1.5, "episodes": 4}, step=3)
        text = output.getvalue()
        assert "SNAPSHOT step=3" in text
        assert "avg_fitness=1.500" in text
        assert "episodes=4" in text

    def test_generation_table(self, sink, output):
        sink.log_metrics("generation", {"generation/max_fitness": 12.25, "generation/total_laps": 3}, step=2)
        text = output.getvalue()
        assert "Generation 2" in text
        assert "max_fitness" in text
        assert "12.250" in text

    def test_event_line(self, sink, output):
        sink.log_event("info", "Training started", {"waves": 2})
        assert "[INFO] Training started (waves=2)" in output.getvalue()


class TestWandbSink:
    def test_generation_metrics_use_the_generation_axis(self):
        run = FakeRun()
        sink = WandbSink(run)
        sink.start({"policy": "ppo"})
        sink.log_metrics("generation", {"generation/max_fitness": 3, "nested": {"a": 1}}, step=2)

        assert ("generation/*", "generation/index") in run.defined
        assert run.config_data == {"policy": "ppo"}
        assert run.logged == [{"generation/max_fitness": 3.0, "generation/index": 2}]

    def test_other_phases_are_prefixed(self):
        run = FakeRun()
        WandbSink(run).log_metrics("snapshot", {"avg_fitness": 1}, step=10)
        assert run.logged == [{"snapshot/avg_fitness": 1.0}]

    def test_stop_finishes_the_run(self):
        run = FakeRun()
        sink = WandbSink(run)
        sink.stop()
        sink.log_event("info", "ignored")
        assert run.finished
        assert run.logged == []


class TestStdlibSink:
    def test_events_reach_logging(self, caplog):
        with caplog.at_level(logging.INFO, logger="racega.run"):
            StdlibSink().log_event("warn", "slow tick", {"agent": 3})
        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == "slow tick (agent=3)"


class TestBuildLogger:
    def test_console_disabled(self):
        log = build_logger(LoggingSchema(console=False))
        assert [type(s) for s in log.sinks] == [StdlibSink]

    def test_console_enabled(self):
        log = build_logger(LoggingSchema(console=True))
        assert [type(s) for s in log.sinks] == [ConsoleSink]

    def test_console_events_print_once(self, caplog):
        log = build_logger(LoggingSchema(console=True))
        with caplog.at_level(logging.DEBUG, logger="racega.run"):
            log.log_event("warn", "slow tick")
        assert [r for r in caplog.records if r.name == "racega.run"] == []

    def test_wandb_sink(self, monkeypatch):
        run = FakeRun()
        calls = []

        def fake_init(project, **kwargs):
            calls.append((project, kwargs))
            return run

        monkeypatch.setattr(logger_module, "init_wandb_run", fake_init)
        log = build_logger(LoggingSchema(console=False, wandb=True, wandb_project="demo"), config_dict={"a": 1})

        assert isinstance(log.sinks[-1], WandbSink)
        assert calls[0][0] == "demo"
        assert calls[0][1]["config"] == {"a": 1}

    def test_missing_wandb_is_a_configuration_error(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "wandb", None)
        with pytest.raises(ConfigurationError):
            init_wandb_run("demo")

    def test_null_sink_accepts_everything(self):
        log = Logger([NullSink()])
        log.start({"a": 1})
        log.log_metrics("snapshot", {"x": 1})
        log.info("hello")
        log.stop()
