#!/usr/bin/env python3
"""
Bash Tool Module

Runs shell commands and decides, per call, whether to answer synchronously
or hand the command off to the background:

- ``background: true``   -> register the session and return at once
- otherwise               -> wait up to the yield window (``yieldMs`` or the
                             configured ``background_ms``); a command that
                             finishes in time is returned inline and never
                             registered, anything slower is registered
                             mid-flight and returned as ``running``
- every command is bounded by a hard timeout (``timeout_sec``); on expiry
  its process group is killed and the session ends ``failed``

Follow-up queries (poll/log/list/kill) go through the process tool, scoped by
the same ``scope_key``.

Usage:
    from tools.bash_tool import create_bash_tool

    bash = create_bash_tool(timeout_sec=60, background_ms=2000, scope_key="agent:alpha")
    result = bash.execute("call-1", {"command": "make test"})
    if result.status == "running":
        session_id = result.details.session_id
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Union

from tools.environments.local import LocalEnvironment
from tools.errors import (
    ElevatedNotAvailableError,
    ProcessSpawnError,
    SessionNotFoundError,
    ToolInputError,
)
from tools.process_registry import (
    COMPLETED,
    DEFAULT_SCOPE,
    FAILED,
    ProcessRegistry,
    ProcessSession,
    process_registry,
    signal_name,
)
from tools.shell_utils import derive_session_name, truncate_middle
from tools.tool_result import FinishedDetails, RunningDetails, ToolResult

logger = logging.getLogger(__name__)

# Defaults (overridable via config.yaml -> bash.* or SHELLVISOR_BASH_* env vars)
DEFAULT_TIMEOUT_SEC = 1800
DEFAULT_YIELD_MS = 10_000
MIN_YIELD_MS = 10
MAX_YIELD_MS = 120_000
DEFAULT_MAX_OUTPUT_CHARS = 30_000

# How long the supervisor lets the reader drain after the shell exits
READER_DRAIN_SECONDS = 0.5

# Lines of output included in a "still running" response
RUNNING_TAIL_LINES = 20


def clamp_yield_ms(value: Optional[float], fallback: int = DEFAULT_YIELD_MS) -> int:
    if value is None:
        return fallback
    return int(min(max(value, MIN_YIELD_MS), MAX_YIELD_MS))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class ElevatedConfig:
    """Elevation policy.

    ``enabled`` turns the feature on, ``allowed`` is the effective permission,
    ``default_level`` ("on"/"off") applies when a call does not say.
    """
    enabled: bool = False
    allowed: bool = False
    default_level: str = "off"

    @classmethod
    def from_value(cls, value: Union["ElevatedConfig", Mapping[str, Any], None]) -> "ElevatedConfig":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        level = value.get("default_level", value.get("defaultLevel", "off"))
        if isinstance(level, bool):
            # YAML reads a bare on/off as a boolean
            level = "on" if level else "off"
        return cls(
            enabled=bool(value.get("enabled", False)),
            allowed=bool(value.get("allowed", False)),
            default_level=str(level).lower(),
        )

    @property
    def permitted(self) -> bool:
        return self.enabled and self.allowed


@dataclass
class BashToolConfig:
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    background_ms: int = DEFAULT_YIELD_MS
    elevated: ElevatedConfig = field(default_factory=ElevatedConfig)
    scope_key: str = DEFAULT_SCOPE
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    shell: str = ""
    cwd: str = ""

    def __post_init__(self):
        if self.timeout_sec is None or self.timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be > 0, got {self.timeout_sec!r}")
        self.elevated = ElevatedConfig.from_value(self.elevated)
        self.background_ms = clamp_yield_ms(self.background_ms)
        self.scope_key = self.scope_key or DEFAULT_SCOPE

    @classmethod
    def from_env(cls, **overrides) -> "BashToolConfig":
        """Defaults, then SHELLVISOR_BASH_* env vars, then explicit overrides."""
        values: Dict[str, Any] = {}
        if os.getenv("SHELLVISOR_BASH_TIMEOUT"):
            values["timeout_sec"] = float(os.environ["SHELLVISOR_BASH_TIMEOUT"])
        if os.getenv("SHELLVISOR_BASH_YIELD_MS"):
            values["background_ms"] = int(os.environ["SHELLVISOR_BASH_YIELD_MS"])
        if os.getenv("SHELLVISOR_BASH_MAX_OUTPUT_CHARS"):
            values["max_output_chars"] = int(os.environ["SHELLVISOR_BASH_MAX_OUTPUT_CHARS"])
        if os.getenv("SHELLVISOR_SCOPE"):
            values["scope_key"] = os.environ["SHELLVISOR_SCOPE"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def replace(self, **overrides) -> "BashToolConfig":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown bash tool option(s): {', '.join(sorted(unknown))}")
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return BashToolConfig(**values)


# ---------------------------------------------------------------------------
# Execution engine
# ---------------------------------------------------------------------------

@dataclass
class RunOutcome:
    session: ProcessSession
    backgrounded: bool


class ExecutionEngine:
    """
    Owns the lifecycle of each command.

    Every launched command gets two daemon threads: a reader that streams
    merged output into the session log, and a supervisor that waits for
    exit (or the hard timeout), joins the reader, and records the terminal
    status. Those two threads are the only writers of the session.
    """

    def __init__(self, registry: ProcessRegistry, environment: LocalEnvironment):
        self.registry = registry
        self.environment = environment

    def run(
        self,
        session: ProcessSession,
        *,
        scope_key: str,
        background: bool,
        yield_ms: int,
        timeout_sec: float,
        env: Optional[Dict[str, str]] = None,
    ) -> RunOutcome:
        if background:
            # Registered before launch so a spawn failure is visible to pollers
            self.registry.register(scope_key, session)
            try:
                self._launch(session, timeout_sec, env)
            except ProcessSpawnError as e:
                logger.warning("Background spawn failed for %s: %s", session.id, e)

                def _spawn_failed(s: ProcessSession, message: str = str(e)) -> None:
                    s.append_output(message + "\n")
                    s.finish(FAILED, reason="spawn")

                self._apply(session, _spawn_failed)
            return RunOutcome(session=session, backgrounded=True)

        # Synchronous attempt; a spawn failure here propagates to the caller
        self._launch(session, timeout_sec, env)
        session.done.wait(yield_ms / 1000.0)
        with session._lock:
            if session.is_terminal:
                return RunOutcome(session=session, backgrounded=False)
            self.registry.register(scope_key, session)
        logger.info(
            "Command outlived %dms yield window, continuing in background as %s",
            yield_ms, session.id,
        )
        return RunOutcome(session=session, backgrounded=True)

    def _launch(self, session: ProcessSession, timeout_sec: float, env: Optional[Dict[str, str]]) -> None:
        handle = self.environment.spawn(
            session.command, cwd=session.cwd, env=env, elevated=session.elevated,
        )
        with session._lock:
            session.handle = handle
            session.pid = handle.pid
            session.cwd = handle.cwd
            session.started_at = handle.started_at

        reader = threading.Thread(
            target=self._reader_loop,
            args=(session, handle),
            daemon=True,
            name=f"proc-reader-{session.id}",
        )
        supervisor = threading.Thread(
            target=self._supervise,
            args=(session, handle, reader, timeout_sec),
            daemon=True,
            name=f"proc-supervisor-{session.id}",
        )
        reader.start()
        supervisor.start()

    def _reader_loop(self, session: ProcessSession, handle) -> None:
        """Background thread: stream merged stdout/stderr into the session log."""
        for chunk in handle.iter_output():
            session.append_output(chunk)

    def _supervise(self, session: ProcessSession, handle, reader: threading.Thread, timeout_sec: float) -> None:
        """Background thread: wait for exit or timeout, then finalize the session."""
        timed_out = False
        outcome = dict(status=FAILED, reason="error")
        try:
            try:
                self.environment.wait(handle, timeout=timeout_sec)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.warning(
                    "Session %s exceeded %ss timeout, killing pid %s",
                    session.id, timeout_sec, handle.pid,
                )
                self.environment.kill(handle)
                self.environment.wait(handle)

            # A backgrounded grandchild can keep the pipe open long after the
            # shell exits; finalize on the shell's exit either way.
            reader.join(timeout=READER_DRAIN_SECONDS)
            if reader.is_alive():
                logger.debug("Output reader for %s still open after exit (child holding the pipe)", session.id)

            returncode = handle.proc.returncode
            if timed_out:
                outcome = dict(status=FAILED, exit_signal=signal_name(returncode), reason="timeout")
            elif handle.killed:
                outcome = dict(status=FAILED, exit_signal=signal_name(returncode), reason="killed")
            elif returncode < 0:
                outcome = dict(status=FAILED, exit_signal=signal_name(returncode), reason="signal")
            elif returncode == 0:
                outcome = dict(status=COMPLETED, exit_code=0)
            else:
                outcome = dict(status=FAILED, exit_code=returncode, reason="exit")
        except Exception:
            logger.exception("Supervisor for %s failed", session.id)
            try:
                self.environment.kill(handle)
            except Exception:
                logger.warning("Could not kill pid %s after supervisor failure", handle.pid, exc_info=True)
        finally:
            status = outcome.pop("status")
            self._apply(session, lambda s: s.finish(status, **outcome))
            # The reader closes stdout itself once it reaches EOF
            self.environment.release(handle, close_output=not reader.is_alive())
            logger.debug("Session %s finished: %s %s", session.id, status, outcome)

    def _apply(self, session: ProcessSession, mutation) -> None:
        """Route a mutation through the registry once the session is registered."""
        if session.registered:
            try:
                self.registry.update(session.id, mutation)
                return
            except SessionNotFoundError:
                pass  # evicted while running
        with session._lock:
            mutation(session)


# ---------------------------------------------------------------------------
# Tool adapter
# ---------------------------------------------------------------------------

def _get_arg(args: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in args and args[name] is not None:
            return args[name]
    return None


def _optional_number(args: Mapping[str, Any], *names: str) -> Optional[float]:
    value = _get_arg(args, *names)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ToolInputError(f"{names[0]} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ToolInputError(f"{names[0]} must be a number") from None


def _optional_bool(args: Mapping[str, Any], *names: str) -> Optional[bool]:
    value = _get_arg(args, *names)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _failure_note(session) -> str:
    reason = session.failure_reason
    if reason == "timeout":
        return "Command timed out and was killed."
    if reason == "killed":
        return "Command was killed."
    if reason == "signal":
        return f"Command terminated by {session.exit_signal}."
    if reason == "spawn":
        return "Command failed to start."
    if session.exit_code is not None:
        return f"Command exited with code {session.exit_code}."
    return "Command failed."


class BashTool:
    """Command-execution entry point. One instance per configuration bundle."""

    name = "bash"

    def __init__(
        self,
        config: Optional[BashToolConfig] = None,
        *,
        registry: Optional[ProcessRegistry] = None,
        environment: Optional[LocalEnvironment] = None,
    ):
        self.config = config or BashToolConfig()
        self.registry = registry if registry is not None else process_registry
        self.environment = environment or LocalEnvironment(cwd=self.config.cwd, shell=self.config.shell)
        self.engine = ExecutionEngine(self.registry, self.environment)

    @property
    def scope_key(self) -> str:
        return self.config.scope_key

    def resolve_elevated(self, requested: Optional[bool]) -> bool:
        policy = self.config.elevated
        if requested is None:
            # A default of "on" never escalates past the policy
            return policy.permitted and policy.default_level == "on"
        if requested and not policy.permitted:
            raise ElevatedNotAvailableError()
        return bool(requested)

    def execute(self, call_id: str, args: Mapping[str, Any]) -> ToolResult:
        command = args.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ToolInputError("command is required")

        elevated = self.resolve_elevated(_optional_bool(args, "elevated"))
        background = bool(_optional_bool(args, "background"))
        yield_ms = clamp_yield_ms(_optional_number(args, "yieldMs", "yield_ms"), self.config.background_ms)
        timeout_sec = _optional_number(args, "timeout", "timeoutSec", "timeout_sec")
        if timeout_sec is None:
            timeout_sec = self.config.timeout_sec
        if timeout_sec <= 0:
            raise ToolInputError("timeout must be > 0")
        workdir = _get_arg(args, "workdir", "cwd") or ""
        env = args.get("env") or None
        if env is not None and not isinstance(env, Mapping):
            raise ToolInputError("env must be an object of string values")

        session = ProcessSession(
            command=command,
            name=derive_session_name(command),
            cwd=workdir,
            elevated=elevated,
        )
        logger.debug("[%s] bash %s (background=%s, yield=%sms)", call_id, session.id, background, yield_ms)

        outcome = self.engine.run(
            session,
            scope_key=self.scope_key,
            background=background,
            yield_ms=yield_ms,
            timeout_sec=timeout_sec,
            env=dict(env) if env else None,
        )
        if outcome.backgrounded:
            return self._running_result(session)
        return self._finished_result(session)

    def _running_result(self, session: ProcessSession) -> ToolResult:
        snap = session.snapshot()
        tail = session.log.slice(limit=RUNNING_TAIL_LINES).text
        text = (
            f"Command still running (session {snap.id}, pid {snap.pid}). "
            "Use process (poll/log/list/kill) for follow-up."
        )
        if tail:
            text += f"\n\n{tail}"
        return ToolResult.text(text, RunningDetails(
            session_id=snap.id,
            name=snap.name,
            pid=snap.pid,
            started_at=int(snap.started_at * 1000),
            total_lines=snap.total_lines,
            tail=tail or None,
        ))

    def _finished_result(self, session: ProcessSession) -> ToolResult:
        snap = session.snapshot()
        output = truncate_middle(session.log.text(), self.config.max_output_chars)
        text = output or "(no output)"
        if snap.status == FAILED:
            text += f"\n\n{_failure_note(snap)}"
        return ToolResult.text(text, FinishedDetails(
            status=snap.status,
            exit_code=snap.exit_code,
            exit_signal=snap.exit_signal,
            failure_reason=snap.failure_reason,
            duration_ms=snap.runtime_ms,
            total_lines=snap.total_lines,
            cwd=snap.cwd,
        ))


def create_bash_tool(
    config: Optional[BashToolConfig] = None,
    *,
    registry: Optional[ProcessRegistry] = None,
    environment: Optional[LocalEnvironment] = None,
    **overrides,
) -> BashTool:
    """
    Build a bash tool.

    ``overrides`` are BashToolConfig fields (timeout_sec, background_ms,
    elevated, scope_key, ...) applied on top of ``config`` or, when no config
    is given, on top of the SHELLVISOR_BASH_* environment defaults.
    """
    base = config if config is not None else BashToolConfig.from_env()
    if overrides:
        base = base.replace(**overrides)
    return BashTool(base, registry=registry, environment=environment)


# ---------------------------------------------------------------------------
# Registry -- the "bash" tool schema + handler
# ---------------------------------------------------------------------------
from tools.registry import registry  # noqa: E402

BASH_SCHEMA = {
    "name": "bash",
    "description": (
        "Run a shell command. Fast commands return their output directly; "
        "commands that run past the yield window (or set background=true) keep "
        "running and return a sessionId for the process tool."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "Shell command to run (passed to <shell> -c)",
            },
            "background": {
                "type": "boolean",
                "description": "Return immediately and keep the command running",
            },
            "yieldMs": {
                "type": "integer",
                "description": f"Milliseconds to wait before backgrounding (default {DEFAULT_YIELD_MS})",
                "minimum": MIN_YIELD_MS,
                "maximum": MAX_YIELD_MS,
            },
            "timeout": {
                "type": "number",
                "description": f"Hard timeout in seconds (default {DEFAULT_TIMEOUT_SEC})",
                "exclusiveMinimum": 0,
            },
            "workdir": {
                "type": "string",
                "description": "Working directory for the command",
            },
            "env": {
                "type": "object",
                "description": "Extra environment variables",
                "additionalProperties": {"type": "string"},
            },
            "elevated": {
                "type": "boolean",
                "description": "Run with elevated privileges, when the policy allows it",
            },
        },
        "required": ["command"],
    },
}


def _handle_bash(args, **kw):
    tool = kw.get("tool") or create_bash_tool(kw.get("config"), scope_key=kw.get("scope_key"))
    return tool.execute(kw.get("call_id", ""), args)


registry.register(
    name="bash",
    toolset="terminal",
    schema=BASH_SCHEMA,
    handler=_handle_bash,
)
