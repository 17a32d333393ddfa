"""
Spike sources: where a monitor gets its group topology and spike data from.

``SpikeSource`` is the interface the monitor consumes. ``SpikeFileReader``
reads the simulator's binary spike files; ``ArraySpikeSource`` serves spikes
that are already in memory.
"""

import math
import os
from typing import Protocol, runtime_checkable

import numpy as np

from spike_monitor.errors import SpikeSourceInvalid

# Header of a spike file: int32 signature, float32 version, int32 grid x/y/z
SPIKE_FILE_SIGNATURE = 206661989
SPIKE_FILE_VERSION = 0.2
_HEADER_DTYPE = np.dtype(
    [("signature", "<i4"), ("version", "<f4"), ("grid", "<i4", (3,))]
)
_EVENT_DTYPE = np.dtype([("time", "<i4"), ("neuron", "<i4")])

# Bin size sentinel meaning "no binning, return raw events"
RAW_BIN_SIZE = -1


@runtime_checkable
class SpikeSource(Protocol):
    """Supplies topology, duration and spike data for one neuron group."""

    def get_topology(self) -> tuple[int, int, int]: ...

    def get_total_duration_ms(self) -> float: ...

    def read_binned(self, bin_size_ms: float) -> np.ndarray: ...

    def read_raw(self) -> tuple[np.ndarray, np.ndarray]: ...


class ArraySpikeSource:
    """Spike source backed by in-memory event arrays.

    Args:
        times: Spike times in ms
        neuron_ids: 1-based neuron ids, same length as ``times``
        grid: Group topology (x, y, z)
        duration_ms: Stimulus duration; defaults to the last spike rounded up
            to whole seconds
    """

    def __init__(
        self,
        times,
        neuron_ids,
        grid: tuple[int, int, int],
        duration_ms: float | None = None,
    ):
        self.times = np.asarray(times, dtype=np.float64).reshape(-1)
        self.neuron_ids = np.asarray(neuron_ids, dtype=np.int64).reshape(-1)
        if self.times.shape != self.neuron_ids.shape:
            raise SpikeSourceInvalid(
                f"Spike times ({self.times.size}) and neuron ids "
                f"({self.neuron_ids.size}) differ in length."
            )

        self.grid = tuple(int(d) for d in grid)
        if len(self.grid) != 3:
            raise SpikeSourceInvalid(f"Grid must have three dimensions, got {grid}.")

        population = int(np.prod(self.grid))
        if self.neuron_ids.size and (
            self.neuron_ids.min() < 1 or self.neuron_ids.max() > population
        ):
            raise SpikeSourceInvalid(
                f"Neuron ids must lie in [1, {population}] for grid {self.grid}."
            )

        if duration_ms is None:
            duration_ms = _default_duration_ms(self.times)
        self.duration_ms = float(duration_ms)

    def get_topology(self) -> tuple[int, int, int]:
        return self.grid

    def get_total_duration_ms(self) -> float:
        return self.duration_ms

    def read_binned(self, bin_size_ms: float) -> np.ndarray:
        """Spike counts per bin and neuron, flattened frame-major.

        The result has ``num_frames * population`` entries where
        ``num_frames = ceil(duration / bin_size_ms)``; entry
        ``f * population + (neuron_id - 1)`` counts spikes of that neuron in
        ``[f * bin_size_ms, (f + 1) * bin_size_ms)``.
        """
        if bin_size_ms == RAW_BIN_SIZE:
            raise ValueError("Use read_raw() for unbinned spike data")
        if bin_size_ms <= 0:
            raise ValueError(f"Bin size must be positive, got {bin_size_ms}")

        population = int(np.prod(self.grid))
        num_frames = max(1, math.ceil(self.duration_ms / bin_size_ms))

        frames = np.floor(self.times / bin_size_ms).astype(np.int64)
        keep = (frames >= 0) & (frames < num_frames)
        flat_idx = frames[keep] * population + (self.neuron_ids[keep] - 1)
        counts = np.bincount(flat_idx, minlength=num_frames * population)
        return counts.astype(np.float64)

    def read_raw(self) -> tuple[np.ndarray, np.ndarray]:
        return self.times.copy(), self.neuron_ids.copy()


class SpikeFileReader(ArraySpikeSource):
    """Reads a binary spike file written by the simulator.

    Raises:
        SpikeSourceInvalid: If the file is missing, has a bad header or a
            truncated event list
    """

    def __init__(self, path: str):
        self.path = path
        if not os.path.isfile(path):
            raise SpikeSourceInvalid(f"Spike file not found: {path}")

        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise SpikeSourceInvalid(f"Cannot read spike file {path}: {e}") from e

        if len(raw) < _HEADER_DTYPE.itemsize:
            raise SpikeSourceInvalid(f"Spike file too short for a header: {path}")

        header = np.frombuffer(raw, dtype=_HEADER_DTYPE, count=1)[0]
        if int(header["signature"]) != SPIKE_FILE_SIGNATURE:
            raise SpikeSourceInvalid(
                f"Unknown file type (signature {int(header['signature'])}): {path}"
            )
        grid = tuple(int(d) for d in header["grid"])
        if any(d <= 0 for d in grid):
            raise SpikeSourceInvalid(f"Invalid grid {grid} in spike file: {path}")

        body = raw[_HEADER_DTYPE.itemsize :]
        if len(body) % _EVENT_DTYPE.itemsize:
            raise SpikeSourceInvalid(f"Truncated spike data in file: {path}")
        events = (
            np.frombuffer(body, dtype=_EVENT_DTYPE)
            if body
            else np.zeros(0, dtype=_EVENT_DTYPE)
        )

        # File stores 0-based neuron ids
        super().__init__(
            events["time"].astype(np.float64),
            events["neuron"].astype(np.int64) + 1,
            grid,
        )
        self.version = float(header["version"])


def open_spike_file(path: str) -> SpikeFileReader:
    """Open a spike file, raising SpikeSourceInvalid if it cannot be read."""
    return SpikeFileReader(path)


def write_spike_file(
    path: str,
    times,
    neuron_ids,
    grid: tuple[int, int, int],
) -> None:
    """Write spikes (1-based neuron ids) in the binary spike file format."""
    times = np.asarray(times).reshape(-1)
    neuron_ids = np.asarray(neuron_ids).reshape(-1)

    header = np.zeros(1, dtype=_HEADER_DTYPE)
    header["signature"] = SPIKE_FILE_SIGNATURE
    header["version"] = SPIKE_FILE_VERSION
    header["grid"] = grid

    events = np.zeros(times.size, dtype=_EVENT_DTYPE)
    events["time"] = times
    events["neuron"] = neuron_ids - 1

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(header.tobytes())
        f.write(events.tobytes())


def _default_duration_ms(times: np.ndarray) -> float:
    """Last spike time rounded up to whole seconds, at least one second."""
    if times.size == 0:
        return 1000.0
    return float(max(1, math.ceil((times.max() + 1) / 1000.0)) * 1000)
