"""
Tests for frame building, caching and slicing.
"""

import itertools

import numpy as np
import pytest

from spike_monitor.errors import (
    ConfigurationError,
    FrameIndexOutOfRange,
    SpikeSourceInvalid,
    StaleBufferShapeMismatch,
    TopologyNotLoaded,
    TopologySizeMismatch,
    UnsupportedPlotType,
)
from spike_monitor.frames import (
    UNLOADED_TOPOLOGY,
    CacheEntry,
    GroupTopology,
    HeatmapBuffer,
    HeatmapFrame,
    PlotMode,
    RasterBuffer,
    RasterFrame,
    build_buffer,
    counts_to_heatmap,
    default_plot_type,
    extract_frame,
    flatten_heatmap_frame,
    should_reload,
)
from spike_monitor.source import ArraySpikeSource


def factorizations(n):
    """All (x, y, z) with x * y * z == n."""
    for x, y in itertools.product(range(1, n + 1), repeat=2):
        if n % (x * y) == 0:
            yield (x, y, n // (x * y))


class TestHeatmapLayout:
    """Tests for reshaping flat counts into the heatmap layout."""

    @pytest.mark.parametrize("population", [1, 6, 12])
    def test_round_trip_for_every_topology(self, population):
        """Flattening a heatmap frame recovers the original counts."""
        rng = np.random.default_rng(0)
        for dims in factorizations(population):
            topology = GroupTopology(*dims)
            counts = rng.integers(0, 20, size=3 * population)
            heatmap = counts_to_heatmap(counts, topology)

            assert heatmap.shape == (dims[1], dims[0] * dims[2], 3)
            for f in range(3):
                flat = flatten_heatmap_frame(heatmap[:, :, f], topology)
                np.testing.assert_array_equal(
                    flat, counts[f * population : (f + 1) * population]
                )

    def test_layout_rows_are_y_columns_are_x_then_z(self):
        """Entry (y, x + X*z) holds the neuron at (x, y, z)."""
        x_dim, y_dim, z_dim = 2, 3, 2
        topology = GroupTopology(x_dim, y_dim, z_dim)
        n = topology.population
        counts = np.arange(2 * n)
        heatmap = counts_to_heatmap(counts, topology)

        for f, x, y, z in itertools.product(
            range(2), range(x_dim), range(y_dim), range(z_dim)
        ):
            neuron_idx = x + x_dim * y + x_dim * y_dim * z
            assert heatmap[y, x + x_dim * z, f] == counts[f * n + neuron_idx]

    def test_length_not_multiple_of_population(self):
        """Binned data that does not fit the grid is rejected."""
        with pytest.raises(SpikeSourceInvalid):
            counts_to_heatmap(np.zeros(7), GroupTopology(2, 2, 1))


class TestDefaultPlotType:
    """Tests for the grid-based default plot type."""

    @pytest.mark.parametrize(
        "grid,expected",
        [
            ((5, 1, 1), PlotMode.RASTER),
            ((1, 5, 1), PlotMode.RASTER),
            ((5, 4, 1), PlotMode.HEATMAP),
            ((5, 1, 4), PlotMode.HEATMAP),
            ((5, 4, 3), PlotMode.RASTER),
            ((1, 1, 1), PlotMode.RASTER),
        ],
    )
    def test_default_plot_type(self, grid, expected):
        assert default_plot_type(GroupTopology(*grid)) == expected

    def test_requires_loaded_topology(self):
        with pytest.raises(TopologyNotLoaded):
            default_plot_type(UNLOADED_TOPOLOGY)


class TestTopology:
    def test_population(self):
        assert GroupTopology(5, 4, 3).population == 60

    def test_reshape_keeps_population(self):
        old = GroupTopology(4, 3, 1)
        assert old.reshaped(GroupTopology(2, 6, 1)) == GroupTopology(2, 6, 1)
        assert old.reshaped(old) == old

    def test_reshape_rejects_new_population(self):
        with pytest.raises(TopologySizeMismatch, match="old: 12, new: 25"):
            GroupTopology(4, 3, 1).reshaped(GroupTopology(5, 5, 1))

    @pytest.mark.parametrize("dims", [(-4, -3, 1), (12, 1, 0), (-12, 1, -1)])
    def test_reshape_rejects_non_positive_dims(self, dims):
        with pytest.raises(ConfigurationError, match="positive"):
            GroupTopology(4, 3, 1).reshaped(GroupTopology(*dims))


class TestPlotMode:
    def test_parse_is_case_insensitive(self):
        assert PlotMode.parse("Heatmap") == PlotMode.HEATMAP
        assert PlotMode.parse(PlotMode.RASTER) == PlotMode.RASTER

    def test_unsupported_lists_supported_types(self):
        with pytest.raises(UnsupportedPlotType, match="heatmap, raster"):
            PlotMode.parse("surface")


class TestBuildBuffer:
    """Tests for reading spike data into buffers."""

    def test_heatmap_bins_counts(self, array_source, grid_2d):
        buffer = build_buffer(array_source, "heatmap", 100, GroupTopology(*grid_2d))

        assert isinstance(buffer, HeatmapBuffer)
        assert buffer.num_frames == 10
        frame3 = buffer.data[:, :, 2]
        # neuron 12 at (3, 2), neuron 3 at (2, 0), neuron 4 at (3, 0)
        assert frame3[2, 3] == 1
        assert frame3[0, 2] == 1
        assert frame3[0, 3] == 1
        assert frame3.sum() == 3

    def test_raster_passes_events_through(self, array_source, spike_events, grid_2d):
        buffer = build_buffer(array_source, PlotMode.RASTER, 100, GroupTopology(*grid_2d))

        assert isinstance(buffer, RasterBuffer)
        np.testing.assert_array_equal(buffer.times, spike_events[0])
        np.testing.assert_array_equal(buffer.neuron_ids, spike_events[1])

    def test_unsupported_mode(self, array_source, grid_2d):
        with pytest.raises(UnsupportedPlotType):
            build_buffer(array_source, "surface", 100, GroupTopology(*grid_2d))

    def test_topology_not_loaded(self, array_source):
        with pytest.raises(TopologyNotLoaded):
            build_buffer(array_source, "raster", 100, UNLOADED_TOPOLOGY)


class TestFrameCache:
    def test_reload_without_entry(self):
        assert should_reload(100, None)

    def test_no_reload_for_same_bin(self):
        entry = CacheEntry(PlotMode.RASTER, 100, RasterBuffer(np.array([]), np.array([])))
        assert not should_reload(100, entry)
        assert should_reload(50, entry)


class TestExtractFrame:
    """Tests for frame slicing."""

    def test_raster_window_is_half_open(self, array_source, grid_2d):
        topology = GroupTopology(*grid_2d)
        buffer = build_buffer(array_source, "raster", 100, topology)

        frame = extract_frame(buffer, 3, topology, 100)

        assert isinstance(frame, RasterFrame)
        np.testing.assert_array_equal(frame.times, [200, 250, 299])
        np.testing.assert_array_equal(frame.neuron_ids, [12, 3, 4])
        assert frame.extent == (200, 300, 1, 12)

    def test_raster_annotation_position(self, array_source, grid_2d):
        topology = GroupTopology(*grid_2d)
        buffer = build_buffer(array_source, "raster", 100, topology)

        frame = extract_frame(buffer, 3, topology, 100)

        assert frame.annotation.text == "3"
        assert frame.annotation.x == pytest.approx(205)
        assert frame.annotation.y == pytest.approx(0.6)

    def test_heatmap_rate_label(self):
        """10 spikes in a 50 ms bin is 200 spikes per second."""
        topology = GroupTopology(2, 2, 1)
        source = ArraySpikeSource(np.arange(10), [1] * 10, (2, 2, 1), duration_ms=100)
        buffer = build_buffer(source, "heatmap", 50, topology)

        frame = extract_frame(buffer, 1, topology, 50)

        assert isinstance(frame, HeatmapFrame)
        assert frame.value_range == (0.0, 10.0)
        assert frame.rate_hz == 200

    def test_heatmap_range_uses_whole_buffer(self):
        """The color range is the global max, also for quiet frames."""
        topology = GroupTopology(2, 2, 1)
        source = ArraySpikeSource(np.arange(10), [1] * 10, (2, 2, 1), duration_ms=100)
        buffer = build_buffer(source, "heatmap", 50, topology)

        frame = extract_frame(buffer, 2, topology, 50, show_frame_number=False)

        assert frame.matrix.sum() == 0
        assert frame.value_range == (0.0, 10.0)
        assert frame.annotation is None

    def test_heatmap_annotation_near_origin(self, array_source, grid_2d):
        topology = GroupTopology(*grid_2d)
        buffer = build_buffer(array_source, "heatmap", 100, topology)

        frame = extract_frame(buffer, 4, topology, 100)

        assert (frame.annotation.x, frame.annotation.y) == (2, 2)

    @pytest.mark.parametrize("frame_nr", [0, 11])
    def test_heatmap_frame_out_of_range(self, array_source, grid_2d, frame_nr):
        topology = GroupTopology(*grid_2d)
        buffer = build_buffer(array_source, "heatmap", 100, topology)

        with pytest.raises(FrameIndexOutOfRange):
            extract_frame(buffer, frame_nr, topology, 100)

    def test_stale_buffer_for_other_mode(self, array_source, grid_2d):
        topology = GroupTopology(*grid_2d)
        buffer = build_buffer(array_source, "heatmap", 100, topology)

        with pytest.raises(StaleBufferShapeMismatch):
            extract_frame(buffer, 1, topology, 100, mode="raster")
