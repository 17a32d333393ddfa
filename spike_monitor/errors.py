"""
Error taxonomy and reporting for spike monitors.

Core functions raise typed ``MonitorError`` subclasses. The monitor wraps each
fallible call in an ``Outcome`` and hands failures to its ``ErrorReporter``,
which records them and then raises, warns or stays silent depending on the
configured error mode.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class MonitorError(Exception):
    """Base class for all spike monitor errors."""

    code = "monitor_error"
    # Raised in every error mode; callers have no usable default to fall back on
    fatal = False


# --- Configuration errors ---


class ConfigurationError(MonitorError):
    """Invalid monitor configuration (name, error mode, bin size, topology)."""

    code = "configuration_error"


class InvalidGroupName(ConfigurationError):
    code = "invalid_group_name"


class UnsupportedErrorMode(ConfigurationError):
    code = "unsupported_error_mode"


class InvalidBinSize(ConfigurationError):
    code = "invalid_bin_size"


class TopologySizeMismatch(ConfigurationError):
    code = "topology_size_mismatch"


# --- Source errors ---


class SourceError(MonitorError):
    """Missing or corrupt backing spike data."""

    code = "source_error"


class SpikeSourceInvalid(SourceError):
    code = "spike_source_invalid"


# --- State errors ---


class StateError(MonitorError):
    """Operation not possible in the monitor's current state."""

    code = "state_error"


class UnsupportedPlotType(StateError):
    code = "unsupported_plot_type"


class TopologyNotLoaded(StateError):
    code = "topology_not_loaded"


class FrameIndexOutOfRange(StateError):
    code = "frame_index_out_of_range"
    fatal = True


class StaleBufferShapeMismatch(StateError):
    code = "stale_buffer_shape_mismatch"


# --- Playback errors ---


class PlaybackError(MonitorError):
    """Display surface problems during playback."""

    code = "playback_error"


class DisplayUnavailable(PlaybackError):
    code = "display_unavailable"


class ErrorMode(str, Enum):
    """How a recorded error is surfaced to the caller."""

    STANDARD = "standard"
    WARNING = "warning"
    SILENT = "silent"

    @classmethod
    def parse(cls, value: "ErrorMode | str") -> "ErrorMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            supported = ", ".join(m.value for m in cls)
            raise UnsupportedErrorMode(
                f'errorMode "{value}" is currently not supported. '
                f"Choose from the following: {supported}."
            ) from None


@dataclass(frozen=True)
class ErrorState:
    """Snapshot of the last recorded error."""

    flag: bool = False
    message: str = ""

    def as_tuple(self) -> tuple[bool, str]:
        return (self.flag, self.message)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a fallible call: either a value or a MonitorError."""

    value: T | None = None
    error: MonitorError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(func: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    """Run ``func`` and capture a raised MonitorError as a failed Outcome.

    Any other exception propagates unchanged.
    """
    try:
        return Outcome(value=func(*args, **kwargs))
    except MonitorError as e:
        return Outcome(error=e)


class ErrorReporter:
    """Records errors and surfaces them according to an ErrorMode.

    The state is overwritten, never accumulated: ``get_error()`` always
    describes the most recent failure since the last ``reset()``.
    """

    def __init__(self, mode: ErrorMode | str = ErrorMode.STANDARD, log=None):
        self.mode = ErrorMode.parse(mode)
        self.log = log or logger
        self.state = ErrorState()

    def reset(self) -> None:
        self.state = ErrorState()

    def get_error(self) -> tuple[bool, str]:
        return self.state.as_tuple()

    def report(
        self,
        error: MonitorError,
        mode: ErrorMode | str | None = None,
        fatal: bool = False,
    ) -> None:
        """Record ``error`` and surface it.

        Args:
            error: The error to record
            mode: Overrides the reporter's mode for this call only
            fatal: Raise regardless of mode (no sensible default result exists)

        Raises:
            MonitorError: In standard mode, or when ``fatal`` is set
        """
        effective = self.mode if mode is None else ErrorMode.parse(mode)
        self.state = ErrorState(flag=True, message=str(error))

        if fatal or error.fatal or effective == ErrorMode.STANDARD:
            raise error
        if effective == ErrorMode.WARNING:
            self.log.warning(f"[{error.code}] {error}")

    def resolve(
        self,
        outcome: Outcome[T],
        default: T | None = None,
        fatal: bool = False,
    ) -> T | None:
        """Return the outcome's value, or report its error and return ``default``."""
        if outcome.ok:
            return outcome.value
        self.report(outcome.error, fatal=fatal)
        return default
