"""
Result objects returned by the bash and process tools.

Every tool call returns ``ToolResult(content=[TextContent(...)], details=...)``.
``details`` is one of the dataclasses below; each carries a fixed ``status``
or ``action`` tag, so callers can match on the type instead of probing an
open dict. ``to_dict()`` produces the wire shape:

    {"content": [{"type": "text", "text": "..."}],
     "details": {"status": "running", "sessionId": "proc_...", ...}}
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

Status = Literal["running", "completed", "failed"]

# snake_case attribute -> camelCase wire key
_WIRE_KEYS = {
    "session_id": "sessionId",
    "total_lines": "totalLines",
    "exit_code": "exitCode",
    "exit_signal": "exitSignal",
    "started_at": "startedAt",
    "finished_at": "finishedAt",
    "runtime_ms": "runtimeMs",
    "duration_ms": "durationMs",
    "failure_reason": "reason",
    "scope_key": "scopeKey",
    "bytes_written": "bytesWritten",
}


def _to_wire(obj: Any) -> Any:
    if isinstance(obj, list):
        return [_to_wire(v) for v in obj]
    if hasattr(obj, "__dataclass_fields__"):
        out = {}
        for name in obj.__dataclass_fields__:
            value = getattr(obj, name)
            if value is None:
                continue
            out[_WIRE_KEYS.get(name, name)] = _to_wire(value)
        return out
    return obj


@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class RunningDetails:
    """Command handed off to the background (or still running when polled)."""
    session_id: str
    name: str
    pid: Optional[int] = None
    started_at: Optional[int] = None
    runtime_ms: Optional[int] = None
    total_lines: Optional[int] = None
    tail: Optional[str] = None
    status: Status = "running"


@dataclass(frozen=True)
class FinishedDetails:
    """Terminal outcome: a synchronous result or a poll of a finished session."""
    status: Status
    exit_code: Optional[int] = None
    exit_signal: Optional[str] = None
    failure_reason: Optional[str] = None
    duration_ms: Optional[int] = None
    session_id: Optional[str] = None
    name: Optional[str] = None
    total_lines: Optional[int] = None
    cwd: Optional[str] = None


@dataclass(frozen=True)
class NotFoundDetails:
    """Unknown id, or an id registered under another scope; the two look the same."""
    session_id: str
    status: Status = "failed"


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    name: str
    command: str
    status: Status
    pid: Optional[int] = None
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    runtime_ms: Optional[int] = None
    exit_code: Optional[int] = None
    total_lines: int = 0
    tail: str = ""


@dataclass(frozen=True)
class SessionListDetails:
    sessions: List[SessionSummary] = field(default_factory=list)
    status: Status = "completed"
    action: str = "list"


@dataclass(frozen=True)
class LogDetails:
    session_id: str
    status: Status
    total_lines: int
    offset: int
    limit: int
    action: str = "log"


@dataclass(frozen=True)
class ActionDetails:
    """Result of kill / write / remove."""
    action: str
    session_id: str
    status: Status
    bytes_written: Optional[int] = None
    note: Optional[str] = None


Details = Union[
    RunningDetails,
    FinishedDetails,
    NotFoundDetails,
    SessionListDetails,
    LogDetails,
    ActionDetails,
]


@dataclass(frozen=True)
class ToolResult:
    content: List[TextContent]
    details: Details

    @classmethod
    def text(cls, text: str, details: Details) -> "ToolResult":
        return cls(content=[TextContent(text=text)], details=details)

    @property
    def status(self) -> Status:
        return self.details.status

    @property
    def text_output(self) -> str:
        return "\n".join(c.text for c in self.content if c.type == "text")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [{"type": c.type, "text": c.text} for c in self.content],
            "details": _to_wire(self.details),
        }
