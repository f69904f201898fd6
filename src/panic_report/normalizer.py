"""
Normalization of parsed crash dumps into wire events.

The dump lists the innermost call first; the ingestion service wants the
oldest call first, so every stack is reversed here. Frames are also tagged
as application or library code, and the failure is shaped into an exception
with a "panic" or "signal" mechanism.
"""

import os
from dataclasses import dataclass, field
from signal import Signals
from typing import Iterable, List, Optional, Union

import structlog

from .event import (
    Event,
    ExceptionValue,
    Mechanism,
    MechanismMeta,
    SignalMeta,
    StackFrame,
    Stacktrace,
    Thread,
)
from .models import ExecutionContext, Failure, Frame, ParsedTrace
from .parser import parse_trace
from .patterns import parse_int_or

logger = structlog.get_logger(__name__)


DEFAULT_GOROOTS = ["/usr/local/go/", "/usr/lib/go"]
DEFAULT_VENDOR_MARKERS = ["/vendor/", "/pkg/mod/"]
DEFAULT_THIRD_PARTY_MARKERS = ["third_party"]


def _default_goroots() -> List[str]:
    roots = list(DEFAULT_GOROOTS)
    goroot = os.getenv("GOROOT")
    if goroot:
        roots.insert(0, goroot.rstrip("/") + "/")
    return roots


@dataclass
class InAppClassifier:
    """
    Decide whether a frame belongs to the reporting application.

    The decision only looks at the file path and package path: frames under a
    Go installation, in a vendor directory or module cache, or on a
    third-party path are library code. Everything else is application code.
    """
    goroots: List[str] = field(default_factory=_default_goroots)
    vendor_markers: List[str] = field(default_factory=lambda: list(DEFAULT_VENDOR_MARKERS))
    third_party_markers: List[str] = field(default_factory=lambda: list(DEFAULT_THIRD_PARTY_MARKERS))

    def is_stdlib(self, frame: Frame) -> bool:
        return any(frame.file.startswith(root) for root in self.goroots if root)

    def is_vendored(self, frame: Frame) -> bool:
        if "vendor" in frame.module.split("/"):
            return True
        return any(marker in frame.file for marker in self.vendor_markers if marker)

    def is_third_party(self, frame: Frame) -> bool:
        return any(
            marker in frame.module or marker in frame.file
            for marker in self.third_party_markers
            if marker
        )

    def is_in_app(self, frame: Frame) -> bool:
        return not (
            self.is_stdlib(frame)
            or self.is_vendored(frame)
            or self.is_third_party(frame)
        )


def signal_number(name: str) -> Optional[int]:
    """Resolve a signal name to its number on this host, if known."""
    try:
        return int(Signals[name])
    except KeyError:
        return None


def build_mechanism(failure: Failure) -> Mechanism:
    """
    Build the exception mechanism for a failure.

    Args:
        failure: Parsed failure

    Returns:
        Mechanism: type "signal" with signal details and handled=False when a
        signal was reported, otherwise type "panic" with no extra data
    """
    if not failure.has_signal:
        return Mechanism(type="panic", data={})

    data = {"signal": failure.signal_name}
    if failure.code is not None:
        data["code"] = failure.code
    if failure.address is not None:
        data["relevant_address"] = failure.address
    if failure.program_counter is not None:
        data["program_counter"] = failure.program_counter

    return Mechanism(
        type="signal",
        description=failure.signal_description or None,
        handled=False,
        data=data,
        meta=MechanismMeta(
            signal=SignalMeta(
                name=failure.signal_name,
                code=parse_int_or(failure.code, field_name="signal_code"),
                number=signal_number(failure.signal_name)
            )
        )
    )


def build_exception(failure: Failure) -> ExceptionValue:
    """Express the failure as the event's exception entry."""
    return ExceptionValue(
        type=failure.kind,
        value=failure.description,
        synthetic=True if failure.synthetic else None,
        mechanism=build_mechanism(failure),
        thread_id=failure.context_id
    )


def build_frame(frame: Frame, classifier: InAppClassifier) -> StackFrame:
    return StackFrame(
        module=frame.module or None,
        function=frame.qualified_function,
        raw_function=frame.raw_text or None,
        filename=frame.file or None,
        lineno=frame.line,
        in_app=classifier.is_in_app(frame)
    )


def build_thread(
    context: ExecutionContext,
    classifier: InAppClassifier,
    crashed: bool = False
) -> Thread:
    """Convert a goroutine into a thread with frames oldest-first."""
    frames = [build_frame(frame, classifier) for frame in reversed(context.frames)]

    return Thread(
        id=context.id,
        name=f"goroutine {context.id}",
        state=context.state or None,
        crashed=crashed,
        stacktrace=Stacktrace(frames=frames)
    )


def build_event(
    trace: ParsedTrace,
    classifier: Optional[InAppClassifier] = None
) -> Event:
    """
    Build a wire event from a parsed trace.

    The trace itself is not modified; frame lists are reversed into new
    lists, so building twice from the same trace gives the same threads.

    Args:
        trace: Result of parse_trace()
        classifier: In-app rules, defaults to the standard Go layout

    Returns:
        Event: Fatal event with a fresh id
    """
    if classifier is None:
        classifier = InAppClassifier()

    crashed_id = trace.failure.context_id
    crashed_seen = False
    threads = []
    for context in trace.contexts:
        # Ids are not guaranteed unique in malformed dumps; only mark the first
        crashed = not crashed_seen and context.id == crashed_id
        crashed_seen = crashed_seen or crashed
        threads.append(build_thread(context, classifier, crashed=crashed))

    event = Event(
        exception=[build_exception(trace.failure)],
        threads=threads
    )

    logger.debug(
        "Built crash event",
        event_id=event.event_id,
        exception_type=trace.failure.kind,
        thread_count=len(threads)
    )
    return event


def parse_event(
    trace: Union[str, Iterable[str]],
    classifier: Optional[InAppClassifier] = None
) -> Optional[Event]:
    """Parse dump text straight into an event; None if there is no panic."""
    parsed = parse_trace(trace)
    if parsed is None:
        return None
    return build_event(parsed, classifier)
