"""
Frame building, caching and slicing.

Turns the data of a ``SpikeSource`` into a typed spike buffer for one plot
mode, decides when a cached buffer can be reused, and extracts what a single
frame needs to be drawn.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

import numpy as np

from spike_monitor.errors import (
    ConfigurationError,
    FrameIndexOutOfRange,
    InvalidBinSize,
    SpikeSourceInvalid,
    StaleBufferShapeMismatch,
    TopologyNotLoaded,
    TopologySizeMismatch,
    UnsupportedPlotType,
)
from spike_monitor.source import RAW_BIN_SIZE, SpikeSource


class PlotMode(str, Enum):
    """Supported plot types."""

    HEATMAP = "heatmap"
    RASTER = "raster"

    @classmethod
    def parse(cls, value: "PlotMode | str") -> "PlotMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            supported = ", ".join(m.value for m in cls)
            raise UnsupportedPlotType(
                f'plotType "{value}" is currently not supported. '
                f"Choose from the following: {supported}."
            ) from None


@dataclass(frozen=True)
class GroupTopology:
    """Spatial layout (x, y, z) of a neuron group."""

    x: int
    y: int
    z: int

    @classmethod
    def from_tuple(cls, dims) -> "GroupTopology":
        x, y, z = (int(d) for d in dims)
        return cls(x, y, z)

    @property
    def population(self) -> int:
        return self.x * self.y * self.z

    @property
    def is_loaded(self) -> bool:
        return self.x > 0 and self.y > 0 and self.z > 0

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.x, self.y, self.z)

    def reshaped(self, other: "GroupTopology") -> "GroupTopology":
        """Return ``other`` if it is a valid layout of the same population."""
        if not other.is_loaded:
            raise ConfigurationError(
                f"Grid dimensions must be positive, got {other.as_tuple()}."
            )
        if other.population != self.population:
            raise TopologySizeMismatch(
                "Population size cannot change when assigning new Grid3D "
                f"property (old: {self.population}, new: {other.population})."
            )
        return other


UNLOADED_TOPOLOGY = GroupTopology(-1, -1, -1)


@dataclass(frozen=True)
class HeatmapBuffer:
    """Spike counts per bin, shape (Y, X*Z, num_frames)."""

    data: np.ndarray

    mode = PlotMode.HEATMAP

    @property
    def num_frames(self) -> int:
        return self.data.shape[2]


@dataclass(frozen=True)
class RasterBuffer:
    """Unbinned spike events (time in ms, 1-based neuron id)."""

    times: np.ndarray
    neuron_ids: np.ndarray

    mode = PlotMode.RASTER

    def __len__(self) -> int:
        return self.times.size


SpikeBuffer = Union[HeatmapBuffer, RasterBuffer]


@dataclass(frozen=True)
class CacheEntry:
    """The buffer of the last successful load, stamped with its parameters."""

    mode: PlotMode
    bin_size_ms: float
    buffer: SpikeBuffer


# --- Frame builder ---


def validate_bin_size(bin_size_ms: float) -> float:
    if bin_size_ms is None or bin_size_ms <= 0:
        raise InvalidBinSize("Bin size of plot time must be greater than zero.")
    return bin_size_ms


def default_plot_type(topology: GroupTopology) -> PlotMode:
    """Preferred plot type for a layout.

    Nx1x1 layouts are shown as a raster, NxMx1 layouts as a heatmap. There is
    no 3D view yet, so NxMxL layouts fall back to a raster as well.
    """
    if not topology.is_loaded:
        raise TopologyNotLoaded("Must load data before setting default plot type")

    dims = 3 - sum(d == 1 for d in topology.as_tuple())
    if dims == 1:
        return PlotMode.RASTER
    elif dims == 2:
        return PlotMode.HEATMAP
    else:
        # TODO: pick a volumetric view once one exists for NxMxL grids
        return PlotMode.RASTER


def counts_to_heatmap(counts: np.ndarray, topology: GroupTopology) -> np.ndarray:
    """Arrange flat per-frame counts into the heatmap display layout.

    ``counts`` holds ``num_frames * population`` values, frame-major, with the
    neuron index running X fastest, then Y, then Z. The result has shape
    (Y, X*Z, num_frames) with ``out[y, x + X*z, f] == frame f, neuron (x, y, z)``.
    """
    counts = np.asarray(counts).reshape(-1)
    n = topology.population
    if n <= 0 or counts.size % n:
        raise SpikeSourceInvalid(
            f"Binned spike data of length {counts.size} does not match "
            f"population {n}."
        )
    num_frames = counts.size // n
    x, y, z = topology.as_tuple()

    grid = counts.reshape(num_frames, z, y, x)
    return grid.transpose(2, 1, 3, 0).reshape(y, z * x, num_frames)


def flatten_heatmap_frame(matrix: np.ndarray, topology: GroupTopology) -> np.ndarray:
    """Inverse of ``counts_to_heatmap`` for a single (Y, X*Z) frame."""
    x, y, z = topology.as_tuple()
    return np.asarray(matrix).reshape(y, z, x).transpose(1, 0, 2).reshape(-1)


def build_buffer(
    source: SpikeSource,
    mode: PlotMode | str,
    bin_size_ms: float,
    topology: GroupTopology,
) -> SpikeBuffer:
    """Read spike data from ``source`` and shape it for ``mode``.

    Heatmaps bin at ``bin_size_ms``; rasters read raw events, the bin size
    only matters later when a frame's time window is cut out.
    """
    mode = PlotMode.parse(mode)
    if not topology.is_loaded:
        raise TopologyNotLoaded("Must load data before building frames")

    if mode == PlotMode.HEATMAP:
        validate_bin_size(bin_size_ms)
        counts = source.read_binned(bin_size_ms)
        return HeatmapBuffer(counts_to_heatmap(counts, topology))
    elif mode == PlotMode.RASTER:
        times, neuron_ids = source.read_raw()
        return RasterBuffer(np.asarray(times), np.asarray(neuron_ids))
    raise UnsupportedPlotType(f'Unrecognized plot type "{mode}".')


# --- Frame cache ---


def should_reload(requested_bin_ms: float, entry: CacheEntry | None) -> bool:
    """A reload is needed unless a buffer exists for the same bin size.

    Only the bin size is compared; a mode change on its own reuses the entry
    and is caught by ``extract_frame``.
    """
    if entry is None:
        return True
    return entry.bin_size_ms != requested_bin_ms


# --- Frame slices ---


@dataclass(frozen=True)
class FrameAnnotation:
    """Frame number label and where to draw it, in data coordinates."""

    text: str
    x: float
    y: float


@dataclass(frozen=True)
class HeatmapFrame:
    frame_nr: int
    matrix: np.ndarray
    value_range: tuple[float, float]
    rate_hz: float
    annotation: FrameAnnotation | None = None

    mode = PlotMode.HEATMAP


@dataclass(frozen=True)
class RasterFrame:
    frame_nr: int
    times: np.ndarray
    neuron_ids: np.ndarray
    extent: tuple[float, float, float, float]
    population: int
    annotation: FrameAnnotation | None = None

    mode = PlotMode.RASTER


FrameSlice = Union[HeatmapFrame, RasterFrame]


def check_buffer_mode(buffer: SpikeBuffer, mode: PlotMode | str) -> None:
    """Raise StaleBufferShapeMismatch unless ``buffer`` was built for ``mode``."""
    mode = PlotMode.parse(mode)
    if buffer.mode != mode:
        raise StaleBufferShapeMismatch(
            f"Cached spike data was prepared for a {buffer.mode.value} plot, "
            f"cannot draw it as {mode.value}. Change the bin size or reset "
            "the cache to reload."
        )


def extract_frame(
    buffer: SpikeBuffer,
    frame_nr: int,
    topology: GroupTopology,
    bin_size_ms: float,
    mode: PlotMode | str | None = None,
    show_frame_number: bool = True,
) -> FrameSlice:
    """Cut out everything needed to draw frame ``frame_nr`` (1-based).

    Args:
        buffer: Heatmap or raster buffer from ``build_buffer``
        frame_nr: Frame to extract
        topology: Current group layout
        bin_size_ms: Duration of one frame
        mode: Active plot mode; when given, the buffer must have been built for it
        show_frame_number: Attach a frame number annotation

    Raises:
        StaleBufferShapeMismatch: Buffer was built for another plot mode
        FrameIndexOutOfRange: Heatmap frame outside [1, num_frames]
    """
    if mode is not None:
        check_buffer_mode(buffer, mode)

    if isinstance(buffer, HeatmapBuffer):
        return _heatmap_frame(buffer, frame_nr, bin_size_ms, show_frame_number)
    return _raster_frame(buffer, frame_nr, topology, bin_size_ms, show_frame_number)


def _heatmap_frame(
    buffer: HeatmapBuffer, frame_nr: int, bin_size_ms: float, show_frame_number: bool
) -> HeatmapFrame:
    if not 1 <= frame_nr <= buffer.num_frames:
        raise FrameIndexOutOfRange(
            f"Frame {frame_nr} out of range, data has frames 1 to "
            f"{buffer.num_frames}."
        )

    max_count = float(buffer.data.max()) if buffer.data.size else 0.0
    matrix = buffer.data[:, :, frame_nr - 1]

    annotation = None
    if show_frame_number:
        annotation = FrameAnnotation(str(frame_nr), 2, matrix.shape[0] - 1)

    return HeatmapFrame(
        frame_nr=frame_nr,
        matrix=matrix,
        value_range=(0.0, max_count),
        rate_hz=max_count * 1000.0 / bin_size_ms,
        annotation=annotation,
    )


def _raster_frame(
    buffer: RasterBuffer,
    frame_nr: int,
    topology: GroupTopology,
    bin_size_ms: float,
    show_frame_number: bool,
) -> RasterFrame:
    start = (frame_nr - 1) * bin_size_ms
    stop = frame_nr * bin_size_ms
    in_window = (buffer.times >= start) & (buffer.times < stop)

    population = topology.population
    annotation = None
    if show_frame_number:
        annotation = FrameAnnotation(
            str(frame_nr), start + (stop - start) * 0.05, population * 0.05
        )

    return RasterFrame(
        frame_nr=frame_nr,
        times=buffer.times[in_window],
        neuron_ids=buffer.neuron_ids[in_window],
        extent=(start, stop, 1, population),
        population=population,
        annotation=annotation,
    )
