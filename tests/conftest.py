"""Pytest configuration and shared fixtures."""
import sys
from pathlib import Path

import numpy as np
import pytest
import torch

# Allow running the suite without installing the package.
PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from racega.events import EventBus  # noqa: E402
from racega.scheduler import SimScheduler  # noqa: E402
from racega.track.checkpoints import CheckpointGraph  # noqa: E402


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="function")
def seed_rng():
    """Seed random number generators for reproducibility."""
    np.random.seed(42)
    torch.manual_seed(42)


@pytest.fixture
def rng():
    """Seeded generator handed to code that takes an explicit ``rng``."""
    return np.random.default_rng(1234)


@pytest.fixture
def small_track():
    """Eight-checkpoint ellipse, small enough to reason about by hand."""
    return CheckpointGraph.ellipse(semi_major=40.0, semi_minor=25.0, count=8, track_width=10.0)


@pytest.fixture
def track():
    """Default-sized ellipse used by the vehicle and runner tests."""
    return CheckpointGraph.ellipse(semi_major=60.0, semi_minor=35.0, count=24, track_width=10.0)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def scheduler():
    return SimScheduler()


@pytest.fixture
def recorded(bus):
    """Collect every event of the given types published on ``bus``."""

    def _record(*event_types):
        seen = []
        for event_type in event_types:
            bus.subscribe(event_type, seen.append)
        return seen

    return _record
