"""
Spike Monitor

Visualization of spike-train recordings for neuron groups on a 3D grid:
- Heatmap and raster frames built from simulator spike files
- Cached frame buffers per bin size
- Timed playback with pause, single-step and quit
- Standard, warning and silent error modes
"""

from spike_monitor.errors import (
    ConfigurationError,
    ErrorMode,
    MonitorError,
    PlaybackError,
    SourceError,
    StateError,
)
from spike_monitor.frames import GroupTopology, PlotMode
from spike_monitor.monitor import GroupMonitor
from spike_monitor.playback import PlaybackController, PlaybackState
from spike_monitor.source import ArraySpikeSource, SpikeFileReader, SpikeSource

__version__ = "0.1.0"

__all__ = [
    "ArraySpikeSource",
    "ConfigurationError",
    "ErrorMode",
    "GroupMonitor",
    "GroupTopology",
    "MonitorError",
    "PlaybackController",
    "PlaybackError",
    "PlaybackState",
    "PlotMode",
    "SourceError",
    "SpikeFileReader",
    "SpikeSource",
    "StateError",
]
