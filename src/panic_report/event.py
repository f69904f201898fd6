"""
Pydantic models for the event payload sent to the ingestion endpoint.

The field names here are the wire names. Optional fields left as None are
dropped from the payload, so e.g. "synthetic" only appears when it is true.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


PLATFORM = "go"
FATAL_LEVEL = "fatal"

# Key under which the raw dump text travels in Event.extra
RAW_DUMP_EXTRA_KEY = "panic"


def new_event_id() -> str:
    """Generate an event id: lowercase hex, no separators."""
    return uuid.uuid4().hex


class SignalMeta(BaseModel):
    """Signal details in the form the ingestion service understands natively."""
    name: str = Field(..., description="Signal name, e.g. SIGSEGV")
    code: int = Field(default=0, description="Signal code, 0 if it could not be parsed")
    number: Optional[int] = Field(None, description="Signal number on the reporting host")


class MechanismMeta(BaseModel):
    """Operating system specific mechanism metadata."""
    signal: Optional[SignalMeta] = Field(None, description="Signal that triggered the failure")


class Mechanism(BaseModel):
    """How the failure arose: a plain panic or a hardware signal."""
    type: str = Field(..., description="Either 'panic' or 'signal'")
    description: Optional[str] = Field(None, description="Human readable signal description")
    handled: Optional[bool] = Field(None, description="False for signal-triggered failures")
    data: Dict[str, Any] = Field(default_factory=dict, description="Auxiliary signal fields")
    meta: Optional[MechanismMeta] = Field(None, description="Structured signal metadata")


class ExceptionValue(BaseModel):
    """The failure, expressed as an exception."""
    type: str = Field(..., description="Failure kind")
    value: str = Field(default="", description="Failure description")
    synthetic: Optional[bool] = Field(None, description="Present and true for signal-triggered failures")
    mechanism: Mechanism = Field(..., description="Failure mechanism")
    thread_id: Optional[str] = Field(None, description="Id of the goroutine that raised the failure")


class StackFrame(BaseModel):
    """A single frame of a thread's stack trace, oldest call first."""
    module: Optional[str] = Field(None, description="Go package path")
    function: str = Field(..., description="Function name, qualified with its receiver")
    raw_function: Optional[str] = Field(None, description="Function line exactly as printed in the dump")
    filename: Optional[str] = Field(None, description="Source file")
    lineno: int = Field(default=0, description="Line number, 0 if unknown")
    in_app: bool = Field(..., description="True if the frame belongs to the application")


class Stacktrace(BaseModel):
    """Ordered frames of a thread."""
    frames: List[StackFrame] = Field(default_factory=list)


class Thread(BaseModel):
    """A goroutine alive at crash time."""
    id: str = Field(..., description="Goroutine id as printed in the dump")
    name: Optional[str] = Field(None, description="Display name")
    state: Optional[str] = Field(None, description="Scheduler state, e.g. 'running'")
    crashed: bool = Field(default=False, description="True for the goroutine that panicked")
    stacktrace: Stacktrace = Field(default_factory=Stacktrace)


class Event(BaseModel):
    """A normalized crash event."""
    event_id: str = Field(default_factory=new_event_id, description="Unique event identifier")
    exception: List[ExceptionValue] = Field(..., description="Single element exception list")
    threads: List[Thread] = Field(default_factory=list, description="Goroutines in dump order")
    platform: str = Field(default=PLATFORM, description="Source runtime")
    level: str = Field(default=FATAL_LEVEL, description="Severity level")
    timestamp: Optional[datetime] = Field(None, description="Time the crash was reported")
    environment: Optional[str] = Field(None, description="Deployment environment")
    release: Optional[str] = Field(None, description="Application release")
    server_name: Optional[str] = Field(None, description="Host that produced the crash")
    tags: Dict[str, str] = Field(default_factory=dict, description="Indexed key-value tags")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Arbitrary extra data")

    @property
    def failure(self) -> ExceptionValue:
        """The single exception entry."""
        return self.exception[0]

    def to_payload(self) -> Dict[str, Any]:
        """Render the event as a JSON-ready dictionary with wire field names."""
        payload = self.model_dump(mode="json", exclude_none=True)
        for key in ("tags", "extra"):
            if not payload.get(key):
                payload.pop(key, None)
        return payload
