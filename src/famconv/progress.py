from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Sequence, Type, TypeVar, Union, runtime_checkable

LOG = logging.getLogger(__name__)


def clamp_percent(value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(100.0, number))


# ------------- events -------------
@dataclass(frozen=True)
class StatusChanged:
    message: str
    percent: Optional[float] = None

    def __post_init__(self) -> None:
        if self.percent is not None:
            object.__setattr__(self, "percent", clamp_percent(self.percent))


@dataclass(frozen=True)
class ProgressChanged:
    percent: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "percent", clamp_percent(self.percent))


@dataclass(frozen=True)
class WarningReported:
    message: str


@dataclass(frozen=True)
class ErrorReported:
    message: str
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class Completed:
    message: str
    success: bool


ProgressEvent = Union[StatusChanged, ProgressChanged, WarningReported, ErrorReported, Completed]
E = TypeVar("E")


# ------------- sinks -------------
@runtime_checkable
class ProgressSink(Protocol):
    def emit(self, event: ProgressEvent) -> None:
        ...


class NullSink:
    """Discards every event."""

    def emit(self, event: ProgressEvent) -> None:
        return None


class LoggingSink:
    """Mirror progress events into a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None, *, progress_level: int = logging.DEBUG) -> None:
        self.logger = logger or LOG
        self.progress_level = progress_level

    def emit(self, event: ProgressEvent) -> None:
        log = self.logger
        if isinstance(event, StatusChanged):
            if event.percent is None:
                log.info("%s", event.message)
            else:
                log.info("[%3.0f%%] %s", event.percent, event.message)
        elif isinstance(event, ProgressChanged):
            log.log(self.progress_level, "Progress %.1f%%", event.percent)
        elif isinstance(event, WarningReported):
            log.warning("%s", event.message)
        elif isinstance(event, ErrorReported):
            if event.cause is not None:
                log.error("%s (%s)", event.message, event.cause)
            else:
                log.error("%s", event.message)
        elif isinstance(event, Completed):
            if event.success:
                log.info("Completed: %s", event.message)
            else:
                log.error("Completed with failure: %s", event.message)


class RecordingSink:
    """Keep every event in order; handy for callers and tests."""

    def __init__(self) -> None:
        self.events: List[ProgressEvent] = []

    def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [event for event in self.events if isinstance(event, event_type)]

    @property
    def warnings(self) -> List[WarningReported]:
        return self.of_type(WarningReported)

    @property
    def errors(self) -> List[ErrorReported]:
        return self.of_type(ErrorReported)

    @property
    def completions(self) -> List[Completed]:
        return self.of_type(Completed)

    @property
    def percents(self) -> List[float]:
        values: List[float] = []
        for event in self.events:
            if isinstance(event, ProgressChanged):
                values.append(event.percent)
            elif isinstance(event, StatusChanged) and event.percent is not None:
                values.append(event.percent)
        return values

    def clear(self) -> None:
        self.events.clear()


class CallbackSink:
    """Adapt a plain callable. Exceptions from the callable are logged, never raised."""

    def __init__(self, callback: Callable[[ProgressEvent], Any]) -> None:
        self.callback = callback

    def emit(self, event: ProgressEvent) -> None:
        try:
            self.callback(event)
        except Exception as exc:
            LOG.warning("Progress callback raised %s: %s", type(exc).__name__, exc)


class TeeSink:
    def __init__(self, *sinks: ProgressSink) -> None:
        self.sinks: Sequence[ProgressSink] = tuple(sinks)

    def emit(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as exc:
                LOG.warning("Progress sink %s raised %s: %s", type(sink).__name__, type(exc).__name__, exc)


def as_sink(target: Any) -> ProgressSink:
    """Coerce ``None``, a callable or a sink into a sink."""
    if target is None:
        return NullSink()
    if isinstance(target, ProgressSink):
        return target
    if callable(target):
        return CallbackSink(target)
    raise TypeError(f"Cannot use {type(target).__name__} as a progress sink")


# ------------- cancellation -------------
def is_cancelled(cancel_event: Any | None) -> bool:
    """Poll a cancellation token (``threading.Event``-like or truthy value)."""
    if cancel_event is None:
        return False
    is_set = getattr(cancel_event, "is_set", None)
    if callable(is_set):
        try:
            return bool(is_set())
        except Exception:
            return False
    return bool(cancel_event)


# ------------- stage reporting -------------
@dataclass
class StageReporter:
    """Emit the events of one stage invocation.

    Percentages are clamped to [0, 100] and never go backwards. Exactly one
    :class:`Completed` event is emitted; later calls to :meth:`complete` are
    ignored.
    """

    sink: ProgressSink
    stage: str = ""
    percent: float = 0.0
    warnings: int = 0
    errors: int = 0
    completed: Optional[Completed] = None
    warning_messages: List[str] = field(default_factory=list, repr=False)

    def _emit(self, event: ProgressEvent) -> None:
        try:
            self.sink.emit(event)
        except Exception as exc:
            LOG.warning("Progress sink raised %s: %s", type(exc).__name__, exc)

    def _advance(self, percent: float) -> float:
        self.percent = max(self.percent, clamp_percent(percent))
        return self.percent

    def status(self, message: str, percent: Optional[float] = None) -> None:
        if percent is not None:
            percent = self._advance(percent)
        self._emit(StatusChanged(message, percent))

    def progress(self, percent: float) -> None:
        self._emit(ProgressChanged(self._advance(percent)))

    def step(self, start: float, end: float, index: int, total: int) -> None:
        """Report linear progress for item ``index`` (0-based, finished) of ``total``."""
        if total <= 0:
            self.progress(end)
            return
        fraction = min(max(index + 1, 0), total) / float(total)
        self.progress(start + (end - start) * fraction)

    def warning(self, message: str) -> None:
        self.warnings += 1
        self.warning_messages.append(message)
        self._emit(WarningReported(message))

    def error(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.errors += 1
        self._emit(ErrorReported(message, cause))

    def complete(self, message: str, success: bool) -> Completed:
        if self.completed is not None:
            LOG.debug("Stage %s already completed; ignoring '%s'", self.stage, message)
            return self.completed
        if success and self.percent < 100.0:
            self.progress(100.0)
        event = Completed(message, bool(success))
        self.completed = event
        self._emit(event)
        return event

    def fail(self, message: str, cause: Optional[BaseException] = None) -> Completed:
        """Structural failure: one error event followed by a failed completion."""
        self.error(message, cause)
        return self.complete(message, False)

    def scoped(self, start: float, end: float) -> "ScopedSink":
        return ScopedSink(self, start, end)


class ScopedSink:
    """Sink that maps a collaborator's 0-100 progress into ``[start, end]`` of a stage.

    Completion events from the collaborator are turned into status messages so
    the stage keeps a single terminal event.
    """

    def __init__(self, reporter: StageReporter, start: float, end: float) -> None:
        self.reporter = reporter
        self.start = clamp_percent(start)
        self.end = max(self.start, clamp_percent(end))

    def _map(self, percent: float) -> float:
        return self.start + (self.end - self.start) * clamp_percent(percent) / 100.0

    def emit(self, event: ProgressEvent) -> None:
        if isinstance(event, ProgressChanged):
            self.reporter.progress(self._map(event.percent))
        elif isinstance(event, StatusChanged):
            mapped = None if event.percent is None else self._map(event.percent)
            self.reporter.status(event.message, mapped)
        elif isinstance(event, WarningReported):
            self.reporter.warning(event.message)
        elif isinstance(event, ErrorReported):
            self.reporter.error(event.message, event.cause)
        elif isinstance(event, Completed):
            self.reporter.status(event.message)


__all__ = [
    "CallbackSink",
    "Completed",
    "ErrorReported",
    "LoggingSink",
    "NullSink",
    "ProgressChanged",
    "ProgressEvent",
    "ProgressSink",
    "RecordingSink",
    "ScopedSink",
    "StageReporter",
    "StatusChanged",
    "TeeSink",
    "WarningReported",
    "as_sink",
    "clamp_percent",
    "is_cancelled",
]
