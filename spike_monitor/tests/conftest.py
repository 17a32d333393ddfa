"""
Pytest fixtures for spike monitor tests.
"""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from loguru import logger

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from spike_monitor.source import ArraySpikeSource, write_spike_file
from spike_monitor.tests.fakes import FakeDisplay


@pytest.fixture
def fake_display():
    return FakeDisplay()


@pytest.fixture
def grid_2d():
    return (4, 3, 1)


@pytest.fixture
def spike_events():
    """Spikes of a 4x3x1 group over 1000 ms: (times, 1-based neuron ids)."""
    times = np.array([5, 20, 150, 199, 200, 250, 299, 300, 480, 999])
    neuron_ids = np.array([1, 2, 5, 12, 12, 3, 4, 7, 1, 12])
    return times, neuron_ids


@pytest.fixture
def array_source(spike_events, grid_2d):
    times, neuron_ids = spike_events
    return ArraySpikeSource(times, neuron_ids, grid_2d, duration_ms=1000)


@pytest.fixture
def spike_file(tmp_path, spike_events, grid_2d):
    """Spike file 'spkV1.dat' in a temporary results folder."""
    times, neuron_ids = spike_events
    path = tmp_path / "spkV1.dat"
    write_spike_file(str(path), times, neuron_ids, grid_2d)
    return path


@pytest.fixture
def warnings_log():
    """Collect loguru messages at WARNING level and above."""
    messages = []
    handler_id = logger.add(lambda msg: messages.append(str(msg)), level="WARNING")
    yield messages
    logger.remove(handler_id)
