"""
Process Tool -- follow-up control for sessions started by the bash tool.

Actions:
  list    sessions in this tool's scope, in start order
  poll    status plus the recent tail of output
  log     line-sliced output (offset/limit; defaults to the last lines)
  kill    terminate a running session (it ends as failed)
  write   send data to a running session's stdin
  remove  evict a session, killing it first if it is still running

A session id that does not exist, or that belongs to another scope, gets
the same failed-shaped answer; nothing about the foreign session leaks.
"""

import logging
from typing import Any, Mapping, Optional

from tools.environments.local import LocalEnvironment
from tools.errors import ToolInputError
from tools.log_buffer import DEFAULT_TAIL_LINES
from tools.process_registry import (
    DEFAULT_SCOPE,
    FAILED,
    RUNNING,
    ProcessRegistry,
    ProcessSession,
    process_registry,
)
from tools.tool_result import (
    ActionDetails,
    FinishedDetails,
    LogDetails,
    NotFoundDetails,
    RunningDetails,
    SessionListDetails,
    SessionSummary,
    ToolResult,
)

logger = logging.getLogger(__name__)

ACTIONS = ("list", "poll", "log", "kill", "write", "remove")

# How long kill/remove wait for the supervisor to record the outcome
KILL_SETTLE_SECONDS = 3.0

LIST_TAIL_CHARS = 120


def _int_arg(args: Mapping[str, Any], name: str) -> Optional[int]:
    value = args.get(name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ToolInputError(f"{name} must be a non-negative integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ToolInputError(f"{name} must be a non-negative integer") from None
    if number < 0:
        raise ToolInputError(f"{name} must be a non-negative integer")
    return number


def _exit_line(snap) -> str:
    if snap.status == RUNNING:
        return "Process still running."
    if snap.failure_reason == "timeout":
        return "Process timed out and was killed."
    if snap.failure_reason == "killed":
        return "Process was killed."
    if snap.failure_reason == "signal":
        return f"Process terminated by {snap.exit_signal}."
    if snap.failure_reason == "spawn":
        return "Process failed to start."
    return f"Process exited with code {snap.exit_code}."


class ProcessTool:
    """Process-control entry point bound to one scope key."""

    name = "process"

    def __init__(self, *, registry: Optional[ProcessRegistry] = None, scope_key: str = DEFAULT_SCOPE):
        self.registry = registry if registry is not None else process_registry
        self.scope_key = scope_key or DEFAULT_SCOPE

    def execute(self, call_id: str, args: Mapping[str, Any]) -> ToolResult:
        action = args.get("action")
        if action not in ACTIONS:
            raise ToolInputError(
                f"Unknown process action: {action!r}. Use: {', '.join(ACTIONS)}"
            )
        if action == "list":
            return self._list()

        session_id = args.get("sessionId") or args.get("session_id")
        if not session_id:
            raise ToolInputError(f"sessionId is required for {action}")
        session_id = str(session_id)

        session = self.registry.get(self.scope_key, session_id)
        if session is None:
            logger.debug("[%s] %s on unknown session %s (scope %s)", call_id, action, session_id, self.scope_key)
            return self._not_found(session_id)

        if action == "poll":
            return self._poll(session)
        if action == "log":
            return self._log(session, _int_arg(args, "offset"), _int_arg(args, "limit"))
        if action == "kill":
            return self._kill(session)
        if action == "write":
            return self._write(session, args)
        return self._remove(session)

    # ----- Actions -----

    def _not_found(self, session_id: str) -> ToolResult:
        return ToolResult.text(f"No session found for {session_id}", NotFoundDetails(session_id=session_id))

    def _list(self) -> ToolResult:
        summaries = []
        lines = []
        for session in self.registry.list_sessions(self.scope_key):
            snap = session.snapshot()
            tail = session.log.slice(limit=1).text[-LIST_TAIL_CHARS:]
            summaries.append(SessionSummary(
                session_id=snap.id,
                name=snap.name,
                command=snap.command,
                status=snap.status,
                pid=snap.pid,
                started_at=int(snap.started_at * 1000),
                finished_at=int(snap.finished_at * 1000) if snap.finished_at else None,
                runtime_ms=snap.runtime_ms,
                exit_code=snap.exit_code,
                total_lines=snap.total_lines,
                tail=tail,
            ))
            lines.append(f"{snap.id} {snap.status:<9} {snap.runtime_ms / 1000:>7.1f}s :: {snap.name}")
        text = "\n".join(lines) if lines else "No running or recent sessions."
        return ToolResult.text(text, SessionListDetails(sessions=summaries))

    def _poll(self, session: ProcessSession) -> ToolResult:
        snap = session.snapshot()
        output = session.log.slice().text
        text = f"{output}\n\n{_exit_line(snap)}" if output else _exit_line(snap)
        if snap.status == RUNNING:
            return ToolResult.text(text, RunningDetails(
                session_id=snap.id,
                name=snap.name,
                pid=snap.pid,
                started_at=int(snap.started_at * 1000),
                runtime_ms=snap.runtime_ms,
                total_lines=snap.total_lines,
            ))
        return ToolResult.text(text, FinishedDetails(
            status=snap.status,
            exit_code=snap.exit_code,
            exit_signal=snap.exit_signal,
            failure_reason=snap.failure_reason,
            duration_ms=snap.runtime_ms,
            session_id=snap.id,
            name=snap.name,
            total_lines=snap.total_lines,
            cwd=snap.cwd,
        ))

    def _log(self, session: ProcessSession, offset: Optional[int], limit: Optional[int]) -> ToolResult:
        status = session.status
        window = session.log.slice(offset=offset, limit=limit)
        text = window.text if window.lines else "(no output)"
        return ToolResult.text(text, LogDetails(
            session_id=session.id,
            status=status,
            total_lines=window.total_lines,
            offset=window.offset,
            limit=limit if limit is not None else DEFAULT_TAIL_LINES,
        ))

    def _kill(self, session: ProcessSession) -> ToolResult:
        handle = session.handle
        if handle is None or session.is_terminal:
            snap = session.snapshot()
            return ToolResult.text(
                f"Session {snap.id} is not running. {_exit_line(snap)}",
                ActionDetails(action="kill", session_id=snap.id, status=snap.status, note="not running"),
            )
        LocalEnvironment.kill(handle)
        session.done.wait(KILL_SETTLE_SECONDS)
        snap = session.snapshot()
        logger.info("Killed session %s (pid %s)", snap.id, snap.pid)
        return ToolResult.text(
            f"Killed session {snap.id}.",
            ActionDetails(action="kill", session_id=snap.id, status=snap.status if snap.status != RUNNING else FAILED),
        )

    def _write(self, session: ProcessSession, args: Mapping[str, Any]) -> ToolResult:
        data = args.get("data")
        if data is None:
            data = ""
        if not isinstance(data, str):
            raise ToolInputError("data must be a string")
        eof = bool(args.get("eof", False))

        handle = session.handle
        if handle is None or session.is_terminal:
            return ToolResult.text(
                f"Session {session.id} is not running; nothing written.",
                ActionDetails(action="write", session_id=session.id, status=session.status, note="not running"),
            )
        try:
            written = LocalEnvironment.write_stdin(handle, data, eof=eof)
        except (BrokenPipeError, OSError, ValueError) as e:
            return ToolResult.text(
                f"Could not write to session {session.id}: {e}",
                ActionDetails(action="write", session_id=session.id, status=session.status, note="stdin closed"),
            )
        return ToolResult.text(
            f"Wrote {written} bytes to session {session.id}{' and closed stdin' if eof else ''}.",
            ActionDetails(action="write", session_id=session.id, status=session.status, bytes_written=written),
        )

    def _remove(self, session: ProcessSession) -> ToolResult:
        handle = session.handle
        if handle is not None and not session.is_terminal:
            LocalEnvironment.kill(handle)
            session.done.wait(KILL_SETTLE_SECONDS)
        self.registry.remove(self.scope_key, session.id)
        snap = session.snapshot()
        return ToolResult.text(
            f"Removed session {snap.id}.",
            ActionDetails(action="remove", session_id=snap.id, status=snap.status if snap.status != RUNNING else FAILED),
        )


def create_process_tool(*, registry: Optional[ProcessRegistry] = None, scope_key: str = DEFAULT_SCOPE) -> ProcessTool:
    return ProcessTool(registry=registry, scope_key=scope_key)


# ---------------------------------------------------------------------------
# Registry -- the "process" tool schema + handler
# ---------------------------------------------------------------------------
from tools.registry import registry  # noqa: E402

PROCESS_SCHEMA = {
    "name": "process",
    "description": (
        "Manage commands started by bash that are still running or recently finished. "
        "Actions: 'list' (sessions in this scope), 'poll' (status + recent output), "
        "'log' (output lines with offset/limit; defaults to the last lines), "
        "'kill' (terminate), 'write' (send stdin data), 'remove' (forget a session)."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": list(ACTIONS),
                "description": "Action to perform",
            },
            "sessionId": {
                "type": "string",
                "description": "Session id returned by bash. Required for all actions except 'list'.",
            },
            "offset": {
                "type": "integer",
                "description": "Zero-based line offset for 'log' (omit to read the tail)",
                "minimum": 0,
            },
            "limit": {
                "type": "integer",
                "description": f"Max lines for 'log' (default {DEFAULT_TAIL_LINES})",
                "minimum": 0,
            },
            "data": {
                "type": "string",
                "description": "Text to send to stdin for 'write'",
            },
            "eof": {
                "type": "boolean",
                "description": "Close stdin after writing",
            },
        },
        "required": ["action"],
    },
}


def _handle_process(args, **kw):
    tool = kw.get("tool") or create_process_tool(scope_key=kw.get("scope_key") or DEFAULT_SCOPE)
    return tool.execute(kw.get("call_id", ""), args)


registry.register(
    name="process",
    toolset="terminal",
    schema=PROCESS_SCHEMA,
    handler=_handle_process,
)
