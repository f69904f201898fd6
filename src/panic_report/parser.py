"""
State machine that turns crash dump text into a ParsedTrace.

The parser walks the dump one line at a time. Each state knows which line
shape it expects next; lines that don't fit are either skipped or handed to
an earlier state, so a malformed dump never aborts the parse.

    INIT -> PANIC -> SIGNAL -> STACK_FUNC <-> STACK_FILE
                       ^           |              |
                       +-----------+--------------+

A call to parse_trace() owns everything it builds and keeps nothing
afterwards, so independent dumps can be parsed concurrently.
"""

from enum import Enum
from typing import Iterable, List, Optional, Union

import structlog

from .models import ExecutionContext, Failure, Frame, ParsedTrace
from .patterns import (
    is_frames_elided,
    is_hex_token,
    match_context_header,
    match_failure_header,
    match_frame,
    match_location,
    match_signal,
)

logger = structlog.get_logger(__name__)


DEFAULT_FAILURE_KIND = "crash"


class ParserState(str, Enum):
    """Parser states, in forward order."""
    INIT = "init"
    PANIC = "panic"
    SIGNAL = "signal"
    STACK_FUNC = "stack_func"
    STACK_FILE = "stack_file"


class _TraceBuilder:
    """Mutable state for a single parse call."""

    def __init__(self):
        self.state = ParserState.INIT
        self.failure: Optional[Failure] = None
        self.contexts: List[ExecutionContext] = []
        self.context: Optional[ExecutionContext] = None
        self.frame: Optional[Frame] = None

    def handle(self, line: str) -> bool:
        """
        Feed one line to the handler for the current state.

        Returns:
            bool: True if the line was consumed, False if it has to be
            dispatched again in the (already updated) state
        """
        handler = getattr(self, f"_on_{self.state.value}")
        return handler(line)

    def _on_init(self, line: str) -> bool:
        header = match_failure_header(line)
        if header is None:
            return True

        self.failure = Failure(kind=header.text or DEFAULT_FAILURE_KIND)
        self.state = ParserState.PANIC
        return True

    def _on_panic(self, line: str) -> bool:
        signal = match_signal(line)
        if signal is None:
            self.state = ParserState.SIGNAL
            return False

        kind, sep, description = self.failure.kind.partition(": ")
        self.failure.kind = kind
        if sep:
            self.failure.description = description

        self.failure.synthetic = True
        self.failure.signal_name = signal.name
        self.failure.signal_description = signal.description
        self.failure.code = _validated_hex(signal.code, "code")
        self.failure.address = _validated_hex(signal.address, "addr")
        self.failure.program_counter = _validated_hex(signal.program_counter, "pc")

        self.state = ParserState.SIGNAL
        return True

    def _on_signal(self, line: str) -> bool:
        header = match_context_header(line)
        if header is None:
            return True

        self.context = ExecutionContext(id=header.id, state=header.state)
        self.contexts.append(self.context)
        self.frame = None

        # First goroutine listed is taken as the one that panicked
        if self.failure.context_id is None:
            self.failure.context_id = header.id

        self.state = ParserState.STACK_FUNC
        return True

    def _on_stack_func(self, line: str) -> bool:
        if is_frames_elided(line):
            self.context.frames_elided = True
            return True

        match = match_frame(line)
        if match is None:
            self.state = ParserState.SIGNAL
            return False

        self.frame = Frame(
            raw_text=match.raw_text,
            module=match.module,
            receiver_type=match.receiver_type,
            is_pointer_receiver=match.is_pointer_receiver,
            function_name=match.function_name,
            arguments=match.arguments,
            created_by=match.created_by
        )
        self.context.frames.append(self.frame)

        self.state = ParserState.STACK_FILE
        return True

    def _on_stack_file(self, line: str) -> bool:
        location = match_location(line)
        if location is None:
            logger.debug(
                "Expected source location, resynchronizing",
                context_id=self.context.id,
                function=self.frame.function_name,
                line=line
            )
            self.state = ParserState.SIGNAL
            return True

        self.frame.file = location.file
        self.frame.line = location.line
        self.frame.stack_offset = location.stack_offset

        self.state = ParserState.STACK_FUNC
        return True

    def result(self) -> Optional[ParsedTrace]:
        if self.failure is None:
            return None
        return ParsedTrace(failure=self.failure, contexts=self.contexts)


def _validated_hex(value: Optional[str], field_name: str) -> Optional[str]:
    """Keep a signal field only if it looks like a hex number."""
    if value is None:
        return None
    if not is_hex_token(value):
        logger.warning(
            "Ignoring malformed signal field",
            field=field_name,
            value=value
        )
        return None
    return value


def _iter_lines(trace: Union[str, Iterable[str]]) -> Iterable[str]:
    if isinstance(trace, str):
        trace = trace.splitlines()
    for line in trace:
        yield line.rstrip("\r\n")


def parse_trace(trace: Union[str, Iterable[str]]) -> Optional[ParsedTrace]:
    """
    Parse crash dump text into the intermediate model.

    Args:
        trace: Full dump text, or any iterable of lines such as an open file

    Returns:
        ParsedTrace, or None when the input contains no "panic:" header
    """
    builder = _TraceBuilder()

    for line in _iter_lines(trace):
        # A handler that does not consume the line has already switched to
        # the state that should see it.
        while not builder.handle(line):
            pass

    result = builder.result()
    if result is None:
        logger.debug("No panic header found in input")
        return None

    logger.debug(
        "Parsed crash dump",
        failure_kind=result.failure.kind,
        signal=result.failure.signal_name,
        context_count=len(result.contexts),
        frame_count=result.frame_count
    )
    return result
