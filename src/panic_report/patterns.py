"""
Line matchers for the Go crash dump grammar.

A crash dump is made of five kinds of lines we care about:

    panic: runtime error: invalid memory address or nil pointer dereference
    [signal SIGSEGV: segmentation violation code=0x1 addr=0x0 pc=0x4553b2]

    goroutine 1 [running]:
    main.(*Server).handle(0xc000010000, {0x4b2f80, 0x3})
            /home/app/server.go:42 +0x1d

Each matcher either returns a small result object or None. Nothing here
raises on malformed input; numeric fields fall back to zero and are logged.
The compiled expressions are module level and only ever read, so matchers
can be shared between threads.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

logger = structlog.get_logger(__name__)


FAILURE_HEADER_RE = re.compile(r"^panic: (?P<text>.*)$")

SIGNAL_RE = re.compile(r"^\[signal\s(?P<name>[^:]+):\s(?P<detail>.*)\]$")

CONTEXT_HEADER_RE = re.compile(
    r"""
    ^goroutine\ (?P<id>\S+)
    (?:\ \S+=\S+)*                          # gp=, m=, mp= on newer runtimes
    \ \[(?P<state>[^,\]]+)
    (?:,\ (?P<minutes>\d+)\ minutes)?
    (?P<locked>,\ locked\ to\ thread)?
    \]:$
    """,
    re.VERBOSE,
)

FRAME_RE = re.compile(
    r"""
    ^(?P<created_by>created\ by\ )?
    (?:
        (?P<receiver_module>[^\s(]+)\.\((?P<pointer>\*)?(?P<receiver>[^)\s]+)\)\.
    |
        (?P<module>(?:[^\s(]*/)?[^./(\s]+(?:\.v\d+(?=\.))?)\.
    )?
    (?P<function>[^(\s]+)
    (?:\((?P<arguments>.*)\))?
    (?:\ in\ goroutine\ \S+)?$
    """,
    re.VERBOSE,
)

LOCATION_RE = re.compile(r"^\s*(?P<file>.+):(?P<line>\d+)\s*(?P<offset>\S*)(?:\s.*)?$")

HEX_TOKEN_RE = re.compile(r"^(?:0[xX])?[0-9a-fA-F]+$")

FRAMES_ELIDED_MARKER = "...additional frames elided..."

SIGNAL_FIELDS = {
    "code": "code",
    "addr": "address",
    "pc": "program_counter",
}

_OPENERS = "([{"
_CLOSERS = ")]}"


def parse_int_or(text: Optional[str], default: int = 0, field_name: str = "value") -> int:
    """
    Parse an integer, falling back to a default instead of raising.

    The base is detected from the prefix, so "42", "+0x1d" and "0o17" all
    work. An empty value is treated as absent and returns the default
    silently; anything else that fails to parse is logged.

    Args:
        text: Raw token from the dump
        default: Value returned when the token cannot be parsed
        field_name: Name used in the log entry

    Returns:
        int: Parsed value or the default
    """
    if text is None or not text.strip():
        return default

    token = text.strip()
    try:
        return int(token, 0)
    except ValueError:
        pass

    # int(x, 0) rejects leading zeros such as "007"
    try:
        return int(token, 10)
    except ValueError:
        logger.warning(
            "Failed to parse integer, using default",
            field=field_name,
            value=token,
            default=default
        )
        return default


def is_hex_token(text: str) -> bool:
    """Check if a token looks like a hexadecimal number."""
    return bool(HEX_TOKEN_RE.match(text))


def split_arguments(text: Optional[str]) -> List[str]:
    """
    Split a frame argument list on top-level commas.

    Go prints aggregate arguments in braces, e.g. "{0x1419348, 0xc0004924b0}";
    those stay together as a single token.
    """
    if text is None or not text.strip():
        return []

    arguments = []
    depth = 0
    current = []
    for char in text:
        if char in _OPENERS:
            depth += 1
        elif char in _CLOSERS and depth > 0:
            depth -= 1
        elif char == "," and depth == 0:
            arguments.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    arguments.append("".join(current).strip())
    return arguments


@dataclass
class FailureHeaderMatch:
    """A "panic: ..." line."""
    text: str


@dataclass
class SignalMatch:
    """A "[signal ...]" line following the failure header."""
    name: str
    description: str
    code: Optional[str] = None
    address: Optional[str] = None
    program_counter: Optional[str] = None


@dataclass
class ContextHeaderMatch:
    """A "goroutine N [state]:" line."""
    id: str
    state: str
    wait_minutes: Optional[int] = None
    locked_to_thread: bool = False


@dataclass
class FrameMatch:
    """A function line of a stack listing."""
    raw_text: str
    module: str
    receiver_type: str
    is_pointer_receiver: bool
    function_name: str
    arguments: List[str] = field(default_factory=list)
    created_by: bool = False


@dataclass
class LocationMatch:
    """A source location line following a function line."""
    file: str
    line: int
    stack_offset: int


def match_failure_header(line: str) -> Optional[FailureHeaderMatch]:
    """Match the "panic: <text>" header."""
    match = FAILURE_HEADER_RE.match(line)
    if not match:
        return None
    return FailureHeaderMatch(text=match.group("text"))


def match_signal(line: str) -> Optional[SignalMatch]:
    """
    Match a signal annotation.

    Recognized key=value tokens (code, addr, pc) become fields. Every other
    token, bare words and unknown pairs alike, is kept in the description.
    """
    match = SIGNAL_RE.match(line)
    if not match:
        return None

    result = SignalMatch(name=match.group("name").strip(), description="")
    description_parts = []

    for token in match.group("detail").split(" "):
        if not token:
            continue

        key, sep, value = token.partition("=")
        if sep and key in SIGNAL_FIELDS:
            setattr(result, SIGNAL_FIELDS[key], value)
        else:
            description_parts.append(token)

    result.description = " ".join(description_parts)
    return result


def match_context_header(line: str) -> Optional[ContextHeaderMatch]:
    """Match a goroutine header. The id is kept exactly as printed."""
    match = CONTEXT_HEADER_RE.match(line)
    if not match:
        return None

    minutes = match.group("minutes")
    return ContextHeaderMatch(
        id=match.group("id"),
        state=match.group("state").strip(),
        wait_minutes=int(minutes) if minutes else None,
        locked_to_thread=match.group("locked") is not None
    )


def match_frame(line: str) -> Optional[FrameMatch]:
    """
    Match a function line, with or without receiver and arguments.

    With a "(Receiver)" group the package path is everything before it, so
    dotted last segments such as "gopkg.in/yaml.v3" survive. Without one the
    package ends at the first dot of the last path segment, unless that dot
    starts a ".vN" version suffix; "main.main.func1" is function
    "main.func1" of package "main".
    """
    text = line.strip()
    if not text:
        return None

    match = FRAME_RE.match(text)
    if not match:
        return None

    return FrameMatch(
        raw_text=text,
        module=match.group("receiver_module") or match.group("module") or "",
        receiver_type=match.group("receiver") or "",
        is_pointer_receiver=match.group("pointer") is not None,
        function_name=match.group("function"),
        arguments=split_arguments(match.group("arguments")),
        created_by=match.group("created_by") is not None
    )


def match_location(line: str) -> Optional[LocationMatch]:
    """Match a "<file>:<line> <offset>" line."""
    match = LOCATION_RE.match(line)
    if not match:
        return None

    return LocationMatch(
        file=match.group("file"),
        line=parse_int_or(match.group("line"), field_name="line"),
        stack_offset=parse_int_or(match.group("offset"), field_name="stack_offset")
    )


def is_frames_elided(line: str) -> bool:
    """Check for the runtime's truncation marker."""
    return line.lstrip().startswith(FRAMES_ELIDED_MARKER)
