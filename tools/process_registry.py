"""
Process Registry -- In-memory registry of command sessions.

Tracks commands that outlive a synchronous bash call (explicit background or
yield timeout), providing:
  - Scope-partitioned lookup: a session is only visible under the scope key
    it was registered with; anything else looks like an unknown id
  - Append-only line logs with offset/limit slicing
  - Monotonic status: running -> completed | failed, never back
  - Explicit eviction (remove/reset); finished sessions are never dropped
    implicitly

Usage:
    from tools.process_registry import process_registry

    session_id = process_registry.register("agent:alpha", session)
    session = process_registry.get("agent:alpha", session_id)
    sessions = process_registry.list_sessions("agent:alpha")
"""

import logging
import signal
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from tools.environments.local import LocalEnvironment, ProcessHandle
from tools.errors import DuplicateSessionError, SessionNotFoundError
from tools.log_buffer import LogBuffer

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})


def new_session_id() -> str:
    return f"proc_{uuid.uuid4().hex[:12]}"


@dataclass
class SessionSnapshot:
    """Consistent point-in-time copy of a session's mutable fields."""
    id: str
    scope_key: str
    name: str
    command: str
    cwd: str
    pid: Optional[int]
    status: str
    started_at: float
    finished_at: Optional[float]
    exit_code: Optional[int]
    exit_signal: Optional[str]
    failure_reason: Optional[str]
    total_lines: int

    @property
    def runtime_ms(self) -> int:
        end = self.finished_at if self.finished_at is not None else time.time()
        return max(int((end - self.started_at) * 1000), 0)


@dataclass
class ProcessSession:
    """One tracked command execution."""
    command: str                                # Exact shell command string
    name: str                                   # Display label derived from the command
    id: str = field(default_factory=new_session_id)
    scope_key: str = DEFAULT_SCOPE              # Isolation partition
    cwd: str = ""
    pid: Optional[int] = None
    elevated: bool = False
    status: str = RUNNING
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    exit_code: Optional[int] = None             # Natural exit only
    exit_signal: Optional[str] = None           # e.g. "SIGKILL"
    failure_reason: Optional[str] = None        # timeout | killed | signal | exit | spawn | error
    log: LogBuffer = field(default_factory=LogBuffer, repr=False)
    handle: Optional[ProcessHandle] = field(default=None, repr=False)
    registered: bool = False
    done: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def total_lines(self) -> int:
        return len(self.log)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def append_output(self, chunk) -> None:
        with self._lock:
            if self.is_terminal:
                return
            self.log.append(chunk)

    def finish(
        self,
        status: str,
        *,
        exit_code: Optional[int] = None,
        exit_signal: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Move to a terminal status. Returns False if already terminal."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status}")
        with self._lock:
            if self.is_terminal:
                return False
            self.status = status
            self.exit_code = exit_code
            self.exit_signal = exit_signal
            self.failure_reason = reason if status == FAILED else None
            self.finished_at = time.time()
            self.log.freeze()
            self.handle = None
            self.done.set()
            return True

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                id=self.id,
                scope_key=self.scope_key,
                name=self.name,
                command=self.command,
                cwd=self.cwd,
                pid=self.pid,
                status=self.status,
                started_at=self.started_at,
                finished_at=self.finished_at,
                exit_code=self.exit_code,
                exit_signal=self.exit_signal,
                failure_reason=self.failure_reason,
                total_lines=len(self.log),
            )


def signal_name(returncode: int) -> Optional[str]:
    """Map a negative Popen return code to a signal name."""
    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class ProcessRegistry:
    """
    In-memory registry of running and finished sessions.

    Thread-safe. The id map is guarded by one registry lock; each session's
    mutable fields are guarded by that session's own lock and written only
    by the engine threads that own it. Readers never wait on a process.
    """

    def __init__(self):
        self._sessions: Dict[str, ProcessSession] = {}
        self._lock = threading.Lock()

    # ----- Registration -----

    def register(self, scope_key: str, session: ProcessSession) -> str:
        """Store a session under ``scope_key``. Raises DuplicateSessionError."""
        scope_key = scope_key or DEFAULT_SCOPE
        with self._lock:
            if session.id in self._sessions:
                raise DuplicateSessionError(f"Session id already registered: {session.id}")
            session.scope_key = scope_key
            session.registered = True
            self._sessions[session.id] = session
        logger.debug("Registered session %s in scope %s", session.id, scope_key)
        return session.id

    def update(self, session_id: str, mutation: Callable[[ProcessSession], None]) -> None:
        """Apply ``mutation`` to a registered session under its lock."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        with session._lock:
            mutation(session)

    # ----- Query Methods -----

    def get(self, scope_key: str, session_id: str) -> Optional[ProcessSession]:
        """Return the session only if it was registered under ``scope_key``."""
        scope_key = scope_key or DEFAULT_SCOPE
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or session.scope_key != scope_key:
            return None
        return session

    def list_sessions(self, scope_key: str) -> List[ProcessSession]:
        """Sessions registered under ``scope_key``, in registration order."""
        scope_key = scope_key or DEFAULT_SCOPE
        with self._lock:
            return [s for s in self._sessions.values() if s.scope_key == scope_key]

    def has_active(self, scope_key: str) -> bool:
        return any(not s.is_terminal for s in self.list_sessions(scope_key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ----- Eviction -----

    def remove(self, scope_key: str, session_id: str) -> Optional[ProcessSession]:
        """Evict one session. Foreign-scope ids are left alone and return None."""
        scope_key = scope_key or DEFAULT_SCOPE
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.scope_key != scope_key:
                return None
            del self._sessions[session_id]
        return session

    def kill_all(self, scope_key: Optional[str] = None) -> int:
        """Kill every live session, optionally only within one scope. Returns count signalled."""
        with self._lock:
            targets = [
                s for s in self._sessions.values()
                if (scope_key is None or s.scope_key == scope_key) and not s.is_terminal
            ]
        killed = 0
        for session in targets:
            handle = session.handle
            if handle is None:
                continue
            LocalEnvironment.kill(handle)
            killed += 1
        return killed

    def reset(self) -> None:
        """Kill live processes and forget every session."""
        self.kill_all()
        with self._lock:
            self._sessions.clear()


# Module-level default instance; adapters take an explicit registry and
# fall back to this one.
process_registry = ProcessRegistry()


def reset_process_registry_for_tests() -> None:
    process_registry.reset()
