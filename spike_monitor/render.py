"""Matplotlib display surface for heatmap and raster frames."""

from typing import Callable

import matplotlib.pyplot as plt

from spike_monitor.frames import FrameAnnotation, HeatmapFrame, RasterFrame


class MatplotlibDisplay:
    """Draws frame slices into a single matplotlib figure."""

    def __init__(self, group_name: str, figure=None):
        self.group_name = group_name
        self.figure = figure
        self._key_cid = None
        self._key_callback = None

    def _axes(self):
        if self.figure is None or not plt.fignum_exists(self.figure.number):
            self.figure = plt.figure()
            self._key_cid = None
            # "p" and "q" are playback controls, not pan/quit shortcuts here
            manager = self.figure.canvas.manager
            if getattr(manager, "key_press_handler_id", None) is not None:
                self.figure.canvas.mpl_disconnect(manager.key_press_handler_id)
            if self._key_callback is not None:
                self._connect(self._key_callback)
        self.figure.clf()
        return self.figure.add_subplot(1, 1, 1)

    def show(self, frame) -> None:
        ax = self._axes()
        if isinstance(frame, HeatmapFrame):
            self._draw_heatmap(ax, frame)
        elif isinstance(frame, RasterFrame):
            self._draw_raster(ax, frame)
        else:
            raise TypeError(f"Cannot draw frame of type {type(frame).__name__}")
        self.figure.canvas.draw_idle()

    def _draw_heatmap(self, ax, frame: HeatmapFrame) -> None:
        vmin, vmax = frame.value_range
        ax.imshow(frame.matrix, vmin=vmin, vmax=vmax, aspect="equal")
        ax.set_title(
            f"Group {self.group_name}, rate = [0 , {frame.rate_hz:g} Hz]"
        )
        ax.set_xlabel("nrX")
        ax.set_ylabel("nrY")
        self._annotate(ax, frame.annotation)

    def _draw_raster(self, ax, frame: RasterFrame) -> None:
        x0, x1, y0, y1 = frame.extent
        ax.plot(frame.times, frame.neuron_ids, ".k")
        step = max(1, round(frame.population / 10))
        ax.set_yticks(range(0, frame.population + 1, step))
        # Limits after ticks, set_yticks would widen the view to include 0
        ax.set_xlim(x0, x1)
        ax.set_ylim(y0, y1)
        ax.set_box_aspect(1)
        ax.set_title(f"Group {self.group_name}")
        ax.set_xlabel("Time (ms)")
        ax.set_ylabel("Neuron ID")
        self._annotate(ax, frame.annotation)

    @staticmethod
    def _annotate(ax, annotation: FrameAnnotation | None) -> None:
        if annotation is None:
            return
        ax.text(
            annotation.x,
            annotation.y,
            annotation.text,
            fontsize=10,
            bbox={"facecolor": "white", "edgecolor": "none"},
        )

    def pause(self, seconds: float) -> None:
        plt.pause(seconds)

    def wait_for_input(self) -> None:
        if self.figure is not None:
            self.figure.waitforbuttonpress()

    def connect_keys(self, callback: Callable[[str], None]) -> None:
        self._key_callback = callback
        if self.figure is None:
            self._axes()
        else:
            self._connect(callback)

    def _connect(self, callback: Callable[[str], None]) -> None:
        if self._key_cid is not None:
            self.figure.canvas.mpl_disconnect(self._key_cid)

        def on_key(event):
            if event.key:
                callback(event.key)

        self._key_cid = self.figure.canvas.mpl_connect("key_press_event", on_key)

    def close(self) -> None:
        if self.figure is not None:
            plt.close(self.figure)
        self.figure = None
        self._key_cid = None
