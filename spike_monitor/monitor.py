"""
Group monitor: spike-train visualization for one named neuron group.

Ties together the spike source, frame builder, frame cache, frame slicing and
playback. Every public operation resets the error state, runs its fallible
work as an ``Outcome`` and hands failures to the monitor's ``ErrorReporter``.
"""

import math
import os
from typing import Callable, Iterable

from loguru import logger

from spike_monitor.config import MonitorConfig, PlaybackConfig
from spike_monitor.errors import (
    ConfigurationError,
    DisplayUnavailable,
    ErrorMode,
    ErrorReporter,
    InvalidGroupName,
    SpikeSourceInvalid,
    TopologyNotLoaded,
    attempt,
)
from spike_monitor.frames import (
    UNLOADED_TOPOLOGY,
    CacheEntry,
    FrameSlice,
    GroupTopology,
    PlotMode,
    SpikeBuffer,
    build_buffer,
    check_buffer_mode,
    default_plot_type,
    extract_frame,
    should_reload,
    validate_bin_size,
)
from spike_monitor.playback import DisplaySurface, PlaybackController, validate_fps
from spike_monitor.source import SpikeSource, open_spike_file

DEFAULT_BIN_SIZE_MS = 1000.0
FULL_RANGE = -1


def _default_display(name: str) -> DisplaySurface:
    from spike_monitor.render import MatplotlibDisplay

    return MatplotlibDisplay(name)


class GroupMonitor:
    """Visualizes the spike file of one neuron group as heatmap or raster.

    Args:
        name: Group name, part of the spike file name
        results_folder: Folder holding the spike files
        error_mode: "standard" raises, "warning" logs and continues,
            "silent" only records (poll ``get_error()``)
        prefix: Spike file name prefix
        suffix: Spike file name suffix
        source: Use this spike source instead of reading the spike file
        display: Display surface for drawing; matplotlib when omitted
        source_factory: Opens a spike file path as a SpikeSource
        display_factory: Creates the default display for a group name
    """

    supported_plot_types = tuple(m.value for m in PlotMode)
    supported_error_modes = tuple(m.value for m in ErrorMode)

    def __init__(
        self,
        name: str,
        results_folder: str = "",
        error_mode: ErrorMode | str = ErrorMode.STANDARD,
        *,
        prefix: str = "spk",
        suffix: str = ".dat",
        source: SpikeSource | None = None,
        display: DisplaySurface | None = None,
        source_factory: Callable[[str], SpikeSource] = open_spike_file,
        display_factory: Callable[[str], DisplaySurface] = _default_display,
    ):
        self.name = name
        self.results_folder = results_folder or ""
        self.spike_file_prefix = prefix
        self.spike_file_suffix = suffix
        self.log = logger.bind(group=name)

        self.source: SpikeSource | None = None
        self.topology = UNLOADED_TOPOLOGY
        self.cache: CacheEntry | None = None
        self.plot_mode: PlotMode | None = None
        self.bin_size_ms = DEFAULT_BIN_SIZE_MS
        self.playback = PlaybackConfig()

        self.display = display
        self._source_factory = source_factory
        self._display_factory = display_factory
        self._injected_source = source is not None
        self.controller = PlaybackController(display, log=self.log)

        # An unsupported error mode is always reported in standard mode
        self.errors = ErrorReporter(ErrorMode.STANDARD, log=self.log)
        self.errors.mode = self.errors.resolve(attempt(ErrorMode.parse, error_mode))

        if not name:
            self.errors.report(InvalidGroupName("No group name given."))
            return

        if self._injected_source:
            outcome = attempt(self._validate_source, source)
        else:
            outcome = attempt(self._open_spike_file)
        opened = self.errors.resolve(outcome)
        if opened is None:
            return

        self._apply_source(*opened)
        self.plot_mode = default_plot_type(self.topology)

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig,
        source: SpikeSource | None = None,
        display: DisplaySurface | None = None,
    ) -> "GroupMonitor":
        """Create a monitor and apply grid, plot type and bin size from config."""
        monitor = cls(
            config.name,
            config.results_folder,
            config.error_mode,
            prefix=config.spike_file_prefix,
            suffix=config.spike_file_suffix,
            source=source,
            display=display,
        )
        monitor.playback = config.playback
        if monitor.source is None:
            return monitor

        if config.grid is not None:
            monitor.set_topology(config.grid)
        monitor.set_plot_mode(config.plot_type)
        monitor.set_bin_size(config.bin_size_ms)
        return monitor

    # --- Source handling ---

    def get_spike_file_name(self) -> str:
        """Path of the group's spike file: {folder}/{prefix}{name}{suffix}."""
        file_name = f"{self.spike_file_prefix}{self.name}{self.spike_file_suffix}"
        return os.path.join(self.results_folder, file_name)

    def has_valid_source(self) -> bool:
        """Whether a readable spike file exists for the group. Never raises."""
        if self._injected_source:
            return self.source is not None
        return attempt(self._source_factory, self.get_spike_file_name()).ok

    def configure_file_naming(self, prefix: str = "spk", suffix: str = ".dat") -> None:
        """Set the spike file naming convention and re-open the spike file.

        Example: files 'results/spkV1.dat' and 'results/spkMT.dat' use
        results_folder 'results', prefix 'spk' and suffix '.dat'.
        """
        self.errors.reset()
        old = (self.spike_file_prefix, self.spike_file_suffix)
        self.spike_file_prefix, self.spike_file_suffix = prefix, suffix

        if self._injected_source:
            return

        opened = self.errors.resolve(attempt(self._open_spike_file))
        if opened is None:
            self.spike_file_prefix, self.spike_file_suffix = old
            return

        self._apply_source(*opened)
        if self.plot_mode is None:
            self.plot_mode = default_plot_type(self.topology)

    def _open_spike_file(self) -> tuple[SpikeSource, GroupTopology]:
        path = self.get_spike_file_name()
        return self._validate_source(self._source_factory(path))

    @staticmethod
    def _validate_source(source: SpikeSource) -> tuple[SpikeSource, GroupTopology]:
        topology = GroupTopology.from_tuple(source.get_topology())
        if not topology.is_loaded:
            raise SpikeSourceInvalid(
                f"Spike source reports invalid grid {topology.as_tuple()}."
            )
        return source, topology

    def _apply_source(self, source: SpikeSource, topology: GroupTopology) -> None:
        # Source, topology and cache change together
        self.source = source
        self.topology = topology
        self.cache = None
        self.log.info(f"Spike source opened, grid {topology.as_tuple()}")

    # --- Errors ---

    def get_error(self) -> tuple[bool, str]:
        """(flag, message) of the most recent error since the last operation."""
        return self.errors.get_error()

    # --- Settings ---

    def get_default_plot_type(self) -> PlotMode | None:
        return self.errors.resolve(attempt(default_plot_type, self.topology))

    def set_topology(self, topology: GroupTopology | Iterable[int]) -> None:
        """Rearrange the group layout; the population size must not change."""
        self.errors.reset()
        new = self.errors.resolve(attempt(self._reshape, topology))
        if new is None or new == self.topology:
            return

        # A heatmap buffer is laid out for the old grid
        self.topology = new
        self.cache = None
        self.log.info(f"Grid rearranged to {new.as_tuple()}")

    def _reshape(self, topology) -> GroupTopology:
        if not isinstance(topology, GroupTopology):
            dims = tuple(topology)
            if len(dims) != 3:
                raise ConfigurationError(
                    f"Grid must be three positive integers, got {dims}."
                )
            topology = GroupTopology.from_tuple(dims)
        return self.topology.reshaped(topology)

    def set_plot_mode(self, plot_type: PlotMode | str) -> None:
        """Select the plot type; "default" picks one based on the grid."""
        self.errors.reset()
        mode = self.errors.resolve(attempt(self._resolve_mode, plot_type))
        if mode is not None:
            self.plot_mode = mode

    def set_bin_size(self, bin_size_ms: float) -> None:
        """Set the duration of one frame in ms."""
        self.errors.reset()
        bin_size_ms = self.errors.resolve(attempt(validate_bin_size, bin_size_ms))
        if bin_size_ms is not None:
            self.bin_size_ms = bin_size_ms

    def _resolve_mode(self, plot_type: PlotMode | str | None) -> PlotMode:
        if plot_type is None or plot_type == "":
            plot_type = self.plot_mode
        if plot_type is None or (
            isinstance(plot_type, str) and plot_type.lower() == "default"
        ):
            return default_plot_type(self.topology)
        return PlotMode.parse(plot_type)

    # --- Loading ---

    def load(
        self,
        plot_type: PlotMode | str | None = None,
        bin_size_ms: float | None = None,
    ) -> SpikeBuffer | None:
        """Prepare spike data for plotting, reusing the cache when possible."""
        self.errors.reset()
        loaded = self.errors.resolve(attempt(self._load, plot_type, bin_size_ms))
        if loaded is None:
            return None
        self._commit(*loaded)
        return loaded[0].buffer

    def reset_cache(self) -> None:
        """Drop the cached spike buffer so the next load re-reads the source."""
        self.cache = None

    def _load(
        self, plot_type: PlotMode | str | None, bin_size_ms: float | None
    ) -> tuple[CacheEntry, PlotMode]:
        """Cache entry and plot mode for a request; the monitor is not changed."""
        bin_size_ms = validate_bin_size(
            self.bin_size_ms if bin_size_ms is None else bin_size_ms
        )
        mode = self._resolve_mode(plot_type)
        if self.source is None or not self.topology.is_loaded:
            raise TopologyNotLoaded("Must load spike data before plotting.")

        if not should_reload(bin_size_ms, self.cache):
            self.log.debug(f"Reusing cached spike data ({bin_size_ms} ms bins)")
            check_buffer_mode(self.cache.buffer, mode)
            return self.cache, mode

        buffer = build_buffer(self.source, mode, bin_size_ms, self.topology)
        self.log.debug(f"Loaded {mode.value} data with {bin_size_ms} ms bins")
        return CacheEntry(mode, bin_size_ms, buffer), mode

    def _commit(self, entry: CacheEntry, mode: PlotMode) -> None:
        self.cache = entry
        self.plot_mode = mode

    # --- Frames ---

    def render_frame(
        self,
        frame_nr: int,
        plot_type: PlotMode | str | None = None,
        bin_size_ms: float | None = None,
        show_frame_number: bool | None = None,
        draw: bool = True,
    ) -> FrameSlice | None:
        """Extract a single frame and, if ``draw`` is set, show it on the display.

        Frame numbers outside the data raise FrameIndexOutOfRange in every
        error mode.
        """
        self.errors.reset()
        if show_frame_number is None:
            show_frame_number = self.playback.show_frame_number

        frame = self.errors.resolve(
            attempt(
                self._frame_slice, frame_nr, plot_type, bin_size_ms, show_frame_number
            )
        )
        if frame is None or not draw:
            return frame

        display = self.errors.resolve(attempt(self._ensure_display))
        if display is not None:
            display.show(frame)
        return frame

    def _frame_slice(
        self,
        frame_nr: int,
        plot_type: PlotMode | str | None,
        bin_size_ms: float | None,
        show_frame_number: bool,
    ) -> FrameSlice:
        entry, mode = self._load(plot_type, bin_size_ms)
        frame = extract_frame(
            entry.buffer,
            frame_nr,
            self.topology,
            entry.bin_size_ms,
            mode=mode,
            show_frame_number=show_frame_number,
        )
        self._commit(entry, mode)
        return frame

    # --- Playback ---

    def play(
        self,
        frames: Iterable[int] | int | None = None,
        plot_type: PlotMode | str | None = None,
        bin_size_ms: float | None = None,
        step_frames: bool | None = None,
        fps: float | None = None,
        show_frame_number: bool | None = None,
    ) -> list[int]:
        """Play frames on the display surface.

        Press "p" to pause (any key resumes) and "q" to quit. Settings left
        as None come from the monitor's playback configuration.

        Args:
            frames: Frame numbers; None, -1 or empty plays the whole stimulus
            plot_type: Plot type, "default" or None for the current one
            bin_size_ms: Frame duration, None for the current bin size
            step_frames: Wait for a key press between frames
            fps: Frames per second when not stepping
            show_frame_number: Label each frame with its number

        Returns:
            Frame numbers that were shown
        """
        self.errors.reset()
        cfg = self.playback
        outcome = attempt(
            self._play,
            cfg.frames if frames is None else frames,
            plot_type,
            bin_size_ms,
            cfg.step_frames if step_frames is None else step_frames,
            cfg.fps if fps is None else fps,
            cfg.show_frame_number if show_frame_number is None else show_frame_number,
        )
        return self.errors.resolve(outcome, default=[])

    def _play(
        self,
        frames,
        plot_type,
        bin_size_ms,
        step_frames: bool,
        fps: float,
        show_frame_number: bool,
    ) -> list[int]:
        validate_fps(fps, step_frames)
        display = self._ensure_display()
        entry, mode = self._load(plot_type, bin_size_ms)
        frame_range = self._frame_range(frames, entry.bin_size_ms)

        self._commit(entry, mode)
        self.controller.display = display
        topology = self.topology

        def render(frame_nr: int) -> FrameSlice:
            return extract_frame(
                entry.buffer,
                frame_nr,
                topology,
                entry.bin_size_ms,
                mode=mode,
                show_frame_number=show_frame_number,
            )

        return self.controller.play(frame_range, render, step_frames, fps)

    def _frame_range(self, frames, bin_size_ms: float) -> list[int]:
        if isinstance(frames, int):
            frames = [frames]
        frames = [] if frames is None else [int(f) for f in frames]
        if not frames or frames == [FULL_RANGE]:
            num_frames = math.ceil(self.source.get_total_duration_ms() / bin_size_ms)
            frames = list(range(1, num_frames + 1))
        return frames

    def _ensure_display(self) -> DisplaySurface:
        if self.display is None:
            try:
                self.display = self._display_factory(self.name)
            except Exception as e:
                raise DisplayUnavailable(f"Cannot open display: {e}") from e
        return self.display

    def close(self) -> None:
        """Close the display and drop cached spike data."""
        if self.display is not None:
            self.display.close()
        self.cache = None
