"""Persisted training records."""

from .records import TrainingRecordWriter

__all__ = ["TrainingRecordWriter"]
