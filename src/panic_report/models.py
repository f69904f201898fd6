"""
Intermediate data model for parsed crash dumps.

These structures mirror what the dump text says, before any normalization
for the ingestion endpoint. Frames are kept in dump order (innermost call
first); the normalizer is responsible for reordering them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Frame:
    """One call stack entry."""
    raw_text: str
    module: str = ""
    receiver_type: str = ""
    is_pointer_receiver: bool = False
    function_name: str = ""
    arguments: List[str] = field(default_factory=list)
    file: str = ""
    line: int = 0
    stack_offset: int = 0
    created_by: bool = False

    @property
    def qualified_function(self) -> str:
        """Function name prefixed with its receiver type, if any."""
        if self.receiver_type:
            return f"{self.receiver_type}.{self.function_name}"
        return self.function_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "raw_text": self.raw_text,
            "module": self.module,
            "receiver_type": self.receiver_type,
            "is_pointer_receiver": self.is_pointer_receiver,
            "function_name": self.function_name,
            "arguments": list(self.arguments),
            "file": self.file,
            "line": self.line,
            "stack_offset": self.stack_offset,
            "created_by": self.created_by
        }


@dataclass
class ExecutionContext:
    """A goroutine that was alive when the process crashed."""
    id: str
    state: str
    frames: List[Frame] = field(default_factory=list)
    frames_elided: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "state": self.state,
            "frames": [frame.to_dict() for frame in self.frames],
            "frames_elided": self.frames_elided
        }


@dataclass
class Failure:
    """The fault that brought the process down."""
    kind: str
    description: str = ""
    synthetic: bool = False
    signal_name: Optional[str] = None
    signal_description: str = ""
    code: Optional[str] = None
    address: Optional[str] = None
    program_counter: Optional[str] = None
    context_id: Optional[str] = None

    @property
    def has_signal(self) -> bool:
        """Check if the failure was triggered by a hardware signal."""
        return self.signal_name is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "description": self.description,
            "synthetic": self.synthetic,
            "signal_name": self.signal_name,
            "signal_description": self.signal_description,
            "code": self.code,
            "address": self.address,
            "program_counter": self.program_counter,
            "context_id": self.context_id
        }


@dataclass
class ParsedTrace:
    """Result of parsing one crash dump."""
    failure: Failure
    contexts: List[ExecutionContext] = field(default_factory=list)

    @property
    def frame_count(self) -> int:
        """Total number of frames across all contexts."""
        return sum(len(context.frames) for context in self.contexts)

    def get_context(self, context_id: str) -> Optional[ExecutionContext]:
        """Look up an execution context by its dump id."""
        for context in self.contexts:
            if context.id == context_id:
                return context
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "failure": self.failure.to_dict(),
            "contexts": [context.to_dict() for context in self.contexts],
            "frame_count": self.frame_count
        }
