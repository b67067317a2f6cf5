"""
Interactive front end for the bash and process tools.

Plain input runs through the bash tool with the configured yield window:
quick commands print their output, slow ones come back as a session id that
the slash commands (/ps, /poll, /log, /kill, ...) operate on.
"""

import logging
import time
from typing import Any, Dict, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory, InMemoryHistory
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shellvisor_cli.commands import COMMANDS, SlashCommandCompleter, int_or_none, parse_slash
from shellvisor_cli.config import get_shellvisor_home
from tools.bash_tool import BashTool, BashToolConfig, create_bash_tool
from tools.errors import ShellvisorError
from tools.process_tool import ProcessTool, create_process_tool
from tools.tool_result import NotFoundDetails, SessionListDetails, ToolResult

logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    "running": "yellow",
    "completed": "green",
    "failed": "red",
}

FOLLOW_POLL_SECONDS = 0.2


def _style(status: str) -> str:
    return _STATUS_STYLE.get(status, "white")


class ShellvisorREPL:
    """Holds one bash/process tool pair sharing a scope key."""

    def __init__(
        self,
        bash_config: BashToolConfig,
        *,
        console: Optional[Console] = None,
        bash: Optional[BashTool] = None,
        process: Optional[ProcessTool] = None,
        display: Optional[Dict[str, Any]] = None,
    ):
        self.console = console or Console()
        self.bash = bash or create_bash_tool(bash_config)
        self.process = process or create_process_tool(
            registry=self.bash.registry, scope_key=self.bash.scope_key,
        )
        self.display = display or {}
        self._calls = 0

    def _call_id(self) -> str:
        self._calls += 1
        return f"cli-{self._calls}"

    # ----- Rendering -----

    def render(self, result: ToolResult) -> None:
        if isinstance(result.details, SessionListDetails):
            self.render_sessions(result.details)
            return
        status = result.details.status
        text = result.text_output
        session_id = getattr(result.details, "session_id", None)
        title = f"[{_style(status)}]{status}[/]"
        if session_id:
            title += f" [dim]{session_id}[/]"
        self.console.print(Panel(Text(text), title=title, title_align="left", expand=False))

    def render_sessions(self, details: SessionListDetails) -> None:
        if not details.sessions:
            self.console.print("[dim]No running or recent sessions.[/]")
            return
        table = Table(show_header=True, header_style="bold")
        table.add_column("Session")
        table.add_column("Status")
        table.add_column("Runtime", justify="right")
        table.add_column("Lines", justify="right")
        table.add_column("Name")
        for s in details.sessions:
            table.add_row(
                Text(s.session_id),
                f"[{_style(s.status)}]{s.status}[/]",
                f"{(s.runtime_ms or 0) / 1000:.1f}s",
                str(s.total_lines),
                Text(s.name),
            )
        self.console.print(table)

    # ----- Commands -----

    def run_command(self, command: str, background: bool = False) -> ToolResult:
        result = self.bash.execute(self._call_id(), {"command": command, "background": background})
        self.render(result)
        return result

    def process_action(self, action: str, **args) -> ToolResult:
        result = self.process.execute(self._call_id(), {"action": action, **args})
        self.render(result)
        return result

    def show_help(self) -> None:
        table = Table(show_header=False, box=None)
        for cmd, desc in COMMANDS.items():
            table.add_row(f"[bold]{cmd}[/]", desc)
        self.console.print(table)
        self.console.print("[dim]Anything else is run as a shell command.[/]")

    def show_config(self) -> None:
        cfg = self.bash.config
        table = Table(show_header=False, box=None)
        table.add_row("scope_key", cfg.scope_key)
        table.add_row("timeout_sec", f"{cfg.timeout_sec:g}")
        table.add_row("background_ms", str(cfg.background_ms))
        table.add_row("max_output_chars", str(cfg.max_output_chars))
        table.add_row("shell", self.bash.environment.shell)
        table.add_row(
            "elevated",
            f"enabled={cfg.elevated.enabled} allowed={cfg.elevated.allowed} "
            f"default_level={cfg.elevated.default_level}",
        )
        self.console.print(table, markup=False)

    def _usage(self, text: str) -> None:
        self.console.print(Text(text, style="red"))

    def handle_slash(self, line: str) -> bool:
        """Run one slash command. Returns False when the REPL should exit."""
        name, argv, rest = parse_slash(line)
        first = argv[0] if argv else None

        if name == "/quit":
            return False
        if name == "/help":
            self.show_help()
        elif name == "/ps":
            self.process_action("list")
        elif name == "/config":
            self.show_config()
        elif name == "/bg":
            if not rest:
                self._usage("Usage: /bg COMMAND")
            else:
                self.run_command(rest, background=True)
        elif name in ("/poll", "/kill", "/remove"):
            if not first:
                self._usage(f"Usage: {name} ID")
            else:
                self.process_action(name[1:], sessionId=first)
        elif name == "/log":
            if not first:
                self._usage("Usage: /log ID [OFFSET] [LIMIT]")
            else:
                offset = int_or_none(argv[1]) if len(argv) > 1 else None
                limit = int_or_none(argv[2]) if len(argv) > 2 else None
                self.process_action("log", sessionId=first, offset=offset, limit=limit)
        elif name == "/tail":
            if not first:
                self._usage("Usage: /tail ID [LIMIT]")
            else:
                limit = int_or_none(argv[1]) if len(argv) > 1 else self.display.get("log_tail_lines")
                self.process_action("log", sessionId=first, limit=limit)
        elif name == "/write":
            if len(argv) < 2:
                self._usage("Usage: /write ID TEXT")
            else:
                self.process_action("write", sessionId=first, data=" ".join(argv[1:]) + "\n")
        else:
            self.console.print(f"[red]Unknown command {name}.[/] Type /help for the list.")
        return True

    def handle_line(self, line: str) -> bool:
        """Dispatch one line of input. Returns False when the REPL should exit."""
        line = line.strip()
        if not line:
            return True
        try:
            if line.startswith("/"):
                return self.handle_slash(line)
            self.run_command(line)
        except ShellvisorError as e:
            logger.debug("Command rejected: %s", e)
            self.console.print(Text(str(e), style="red"))
        return True

    def shutdown(self) -> int:
        killed = self.bash.registry.kill_all(self.bash.scope_key)
        if killed:
            logger.info("Killed %d live session(s) in scope %s on exit", killed, self.bash.scope_key)
            self.console.print(f"[dim]Killed {killed} running session(s).[/]")
        return killed

    def run(self) -> None:
        history_file = self.display.get("history_file") or str(get_shellvisor_home() / "history")
        try:
            history = FileHistory(history_file)
        except OSError:
            history = InMemoryHistory()
        prompt = PromptSession(history=history, completer=SlashCommandCompleter())

        self.console.print(
            f"[bold]shellvisor[/] scope [cyan]{self.bash.scope_key}[/] "
            "[dim]- /help for commands, /quit to exit[/]"
        )
        try:
            while True:
                try:
                    line = prompt.prompt("$ ")
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    break
                if not self.handle_line(line):
                    break
        finally:
            self.shutdown()


def follow(bash: BashTool, process: ProcessTool, command: str, *,
           background: bool = False, yield_ms: Optional[int] = None,
           timeout: Optional[float] = None, console: Optional[Console] = None) -> int:
    """
    Run one command and stream its log until it finishes.

    Returns a process exit status: the command's exit code, or 1 for any
    other failure.
    """
    console = console or Console()
    args: Dict[str, Any] = {"command": command, "background": background}
    if yield_ms is not None:
        args["yieldMs"] = yield_ms
    if timeout is not None:
        args["timeout"] = timeout

    result = bash.execute("run", args)
    if result.status != "running":
        console.print(result.text_output, markup=False, highlight=False)
        return _exit_status(result)

    session_id = result.details.session_id
    console.print(f"[dim]{session_id} running in background; following output[/]")
    shown = 0
    while True:
        poll = process.execute("follow", {"action": "poll", "sessionId": session_id})
        log = process.execute("follow", {"action": "log", "sessionId": session_id, "offset": shown})
        if isinstance(log.details, NotFoundDetails):
            return 1
        total = log.details.total_lines
        if total > shown:
            console.print(log.text_output, markup=False, highlight=False)
            shown = log.details.offset + min(log.details.limit, total - log.details.offset)
        if poll.status != "running" and shown >= total:
            return _exit_status(poll)
        if poll.status == "running":
            time.sleep(FOLLOW_POLL_SECONDS)


def _exit_status(result: ToolResult) -> int:
    if result.status == "completed":
        return 0
    exit_code = getattr(result.details, "exit_code", None)
    return exit_code if exit_code else 1
