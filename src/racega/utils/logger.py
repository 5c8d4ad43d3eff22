"""Run logging: a façade that fans records out to console, wandb and stdlib sinks.

Diagnostics inside the library go through ``logging.getLogger(__name__)``;
this module carries the run-level stream (start context, generation and
snapshot metrics, lifecycle events) that the training runner emits.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from rich.console import Console
from rich.table import Table

from racega.errors import ConfigurationError

Metrics = Mapping[str, Any]
Extra = Optional[Mapping[str, Any]]


class LogSink(ABC):
    """Destination for run records. ``start``/``stop`` are optional hooks."""

    def start(self, context: Mapping[str, Any]) -> None:
        return None

    def stop(self) -> None:
        return None

    @abstractmethod
    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def log_event(self, level: str, message: str, extra: Extra = None) -> None:
        ...


class Logger:
    """Fans every call out to its sinks in registration order."""

    def __init__(self, sinks: Optional[Iterable[LogSink]] = None) -> None:
        self._sinks: Sequence[LogSink] = tuple(sinks or ())
        self._context: Dict[str, Any] = {}
        self._started = False

    @property
    def sinks(self) -> Sequence[LogSink]:
        return self._sinks

    def start(self, context: Optional[Mapping[str, Any]] = None) -> None:
        if context:
            self._context.update(context)
        if self._started:
            return
        self._started = True
        for sink in self._sinks:
            sink.start(dict(self._context))

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for sink in reversed(self._sinks):
            sink.stop()

    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        if metrics:
            for sink in self._sinks:
                sink.log_metrics(phase, metrics, step=step)

    def log_event(self, level: str, message: str, *, extra: Extra = None) -> None:
        for sink in self._sinks:
            sink.log_event(level, message, extra)

    def info(self, message: str, *, extra: Extra = None) -> None:
        self.log_event("info", message, extra=extra)

    def warning(self, message: str, *, extra: Extra = None) -> None:
        self.log_event("warn", message, extra=extra)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        if abs(value) >= 1000 or (value != 0.0 and abs(value) < 1e-3):
            return f"{value:.3e}"
        return f"{value:.3f}"
    return str(value)


def _format_extra(extra: Extra) -> str:
    if not extra:
        return ""
    return "(" + ", ".join(f"{key}={extra[key]}" for key in sorted(extra)) + ")"


class ConsoleSink(LogSink):
    """rich console output.

    Generation metrics render as a two-column table per generation; snapshot
    metrics and events are single lines.
    """

    _LEVEL_STYLES = {"debug": "dim", "info": "cyan", "warn": "yellow", "error": "bold red"}

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    def start(self, context: Mapping[str, Any]) -> None:
        if context:
            formatted = ", ".join(f"{key}={context[key]}" for key in sorted(context))
            self._console.print(f"[bold]racega[/bold] {formatted}")

    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        scalars = {key: value for key, value in metrics.items() if not isinstance(value, Mapping)}
        if phase == "generation":
            table = Table(
                title=f"Generation {int(step)}" if step is not None else "Generation",
                show_header=False,
                box=None,
                pad_edge=False,
            )
            table.add_column("metric", style="bold")
            table.add_column("value", justify="right")
            for key in sorted(scalars):
                table.add_row(key.rsplit("/", 1)[-1], _format_value(scalars[key]))
            self._console.print(table)
            return
        head = phase.upper() if step is None else f"{phase.upper()} step={step}"
        body = " ".join(f"{key}={_format_value(scalars[key])}" for key in sorted(scalars))
        self._console.print(f"{head} {body}")

    def log_event(self, level: str, message: str, extra: Extra = None) -> None:
        line = f"[{datetime.now():%H:%M:%S}] [{level.upper()}] {message}"
        suffix = _format_extra(extra)
        if suffix:
            line = f"{line} {suffix}"
        self._console.print(line, style=self._LEVEL_STYLES.get(level.lower(), "white"), markup=False)


class WandbSink(LogSink):
    """Relays metrics to a wandb run; generation metrics are stepped by generation index."""

    def __init__(self, run: Any) -> None:
        self._run = run
        self._configured = False

    def start(self, context: Mapping[str, Any]) -> None:
        if self._configured or self._run is None:
            return
        self._configured = True
        self._run.define_metric("generation/index")
        self._run.define_metric("generation/*", step_metric="generation/index")
        if context:
            self._run.config.update(dict(context), allow_val_change=True)

    def stop(self) -> None:
        if self._run is not None:
            self._run.finish()
            self._run = None

    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        if self._run is None:
            return
        payload: Dict[str, Any] = {}
        for key, value in metrics.items():
            if isinstance(value, Mapping):
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = float(value)
            payload[key if "/" in key else f"{phase}/{key}"] = value
        if phase == "generation" and step is not None:
            payload["generation/index"] = int(step)
        if payload:
            self._run.log(payload)

    def log_event(self, level: str, message: str, extra: Extra = None) -> None:
        if self._run is None:
            return
        payload = {"event/level": level.upper(), "event/message": message}
        payload.update({f"event/{key}": value for key, value in (extra or {}).items()})
        self._run.log(payload)


class StdlibSink(LogSink):
    """Routes run events into :mod:`logging`; metrics go out at DEBUG."""

    _LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}

    def __init__(self, logger_name: str = "racega.run") -> None:
        self._logger = logging.getLogger(logger_name)

    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        self._logger.debug("%s step=%s %s", phase, step, dict(metrics))

    def log_event(self, level: str, message: str, extra: Extra = None) -> None:
        suffix = _format_extra(extra)
        if suffix:
            message = f"{message} {suffix}"
        self._logger.log(self._LEVELS.get(level.lower(), logging.INFO), message)


class NullSink(LogSink):
    def log_metrics(self, phase: str, metrics: Metrics, *, step: Optional[float] = None) -> None:
        return None

    def log_event(self, level: str, message: str, extra: Extra = None) -> None:
        return None


NULL_LOGGER = Logger(sinks=(NullSink(),))


def init_wandb_run(project: str, *, entity: Optional[str] = None, name: Optional[str] = None, config: Optional[Mapping[str, Any]] = None):
    """Start a wandb run; wandb is an optional extra and only imported here."""

    try:
        import wandb
    except ImportError as exc:
        raise ConfigurationError(
            "logging.wandb is enabled but wandb is not installed; install racega[wandb]"
        ) from exc
    return wandb.init(project=project, entity=entity, name=name, config=dict(config or {}))


def build_logger(cfg, *, config_dict: Optional[Mapping[str, Any]] = None) -> Logger:
    """Assemble the sink list described by a :class:`LoggingSchema`."""

    # Exactly one sink prints events.
    sinks: list = [ConsoleSink()] if cfg.console else [StdlibSink()]
    if cfg.wandb:
        run = init_wandb_run(
            cfg.wandb_project,
            entity=cfg.wandb_entity,
            name=cfg.run_name,
            config=config_dict,
        )
        sinks.append(WandbSink(run))
    return Logger(sinks=sinks)


__all__ = [
    "ConsoleSink",
    "LogSink",
    "Logger",
    "NULL_LOGGER",
    "NullSink",
    "StdlibSink",
    "WandbSink",
    "build_logger",
    "init_wandb_run",
]
