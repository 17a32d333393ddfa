"""
Timed frame playback with pause, single-step and quit control.

The loop is cooperative: cancellation is only observed between frames, and
the only blocking points are the pacing delay, the step wait and the pause
wait. Key presses arrive through ``PlaybackController.handle_key``, usually
wired to a display surface's key event.
"""

import threading
from enum import Enum
from typing import Callable, Iterable, Protocol

from loguru import logger

from spike_monitor.errors import ConfigurationError, DisplayUnavailable
from spike_monitor.frames import FrameSlice

PAUSE_KEY = "p"
QUIT_KEY = "q"


class PlaybackState(str, Enum):
    """State of the playback loop."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    ABORTED = "aborted"


class DisplaySurface(Protocol):
    """What the playback loop needs from a rendering surface."""

    def show(self, frame: FrameSlice) -> None: ...

    def pause(self, seconds: float) -> None: ...

    def wait_for_input(self) -> None: ...

    def connect_keys(self, callback: Callable[[str], None]) -> None: ...

    def close(self) -> None: ...


class CancellationToken:
    """Quit request shared between the playback loop and an input handler."""

    def __init__(self):
        self._lock = threading.Lock()
        self._requested = False

    def cancel(self) -> None:
        with self._lock:
            self._requested = True

    def clear(self) -> None:
        with self._lock:
            self._requested = False

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._requested

    def consume(self) -> bool:
        """Return whether cancellation was requested, clearing the request."""
        with self._lock:
            requested = self._requested
            self._requested = False
            return requested


def validate_fps(fps: float, step_mode: bool = False) -> None:
    """Raise ConfigurationError for a non-positive frame rate outside step mode."""
    if not step_mode and fps <= 0:
        raise ConfigurationError(f"fps must be greater than zero, got {fps}.")


class PlaybackController:
    """Plays a sequence of frames on a display surface."""

    def __init__(self, display: DisplaySurface | None, log=None):
        self.display = display
        self.token = CancellationToken()
        self.state = PlaybackState.IDLE
        self.log = log or logger

    def handle_key(self, key: str) -> None:
        """React to a key press from the display surface."""
        if self.state == PlaybackState.PAUSED:
            # Any key resumes; quit additionally ends playback at the next frame
            if key == QUIT_KEY:
                self.token.cancel()
            self.resume()
        elif key == PAUSE_KEY:
            self.pause()
        elif key == QUIT_KEY:
            self.token.cancel()

    def pause(self) -> None:
        if self.state == PlaybackState.PLAYING:
            self.log.info("Paused. Press any key to continue.")
            self.state = PlaybackState.PAUSED

    def resume(self) -> None:
        if self.state == PlaybackState.PAUSED:
            self.state = PlaybackState.PLAYING

    def play(
        self,
        frames: Iterable[int],
        render: Callable[[int], FrameSlice],
        step_mode: bool = False,
        fps: float = 5,
    ) -> list[int]:
        """Render ``frames`` in ascending order.

        Args:
            frames: Frame numbers to play
            render: Builds the slice for a frame number
            step_mode: Wait for a key press after each frame instead of timing
            fps: Frames per second when not stepping

        Returns:
            Frame numbers that were shown

        Raises:
            ConfigurationError: If ``fps`` is not positive
            DisplayUnavailable: If no display surface is attached
        """
        validate_fps(fps, step_mode)
        if self.display is None:
            raise DisplayUnavailable("No display surface available for playback.")

        self.token.clear()
        self.display.connect_keys(self.handle_key)
        self.state = PlaybackState.PLAYING
        self.log.debug("Playback started")

        shown = []
        try:
            for frame_nr in sorted(frames):
                if self.token.consume():
                    self._abort()
                    return shown

                self.display.show(render(frame_nr))
                shown.append(frame_nr)

                if step_mode:
                    self.display.wait_for_input()
                else:
                    self.display.pause(1.0 / fps)

                if self.state == PlaybackState.PAUSED:
                    # Key presses resume through handle_key, mouse clicks here
                    self.display.wait_for_input()
                    self.resume()
        finally:
            self.state = PlaybackState.IDLE

        self.log.debug(f"Playback finished after {len(shown)} frames")
        return shown

    def _abort(self) -> None:
        self.state = PlaybackState.ABORTED
        self.log.info("Playback aborted")
        self.display.close()
        self.state = PlaybackState.IDLE
