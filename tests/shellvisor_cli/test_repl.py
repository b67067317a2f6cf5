"""Tests for the interactive front end and `shellvisor run` follow mode.

Input lines are fed straight to handle_line(); output is captured from a
rich Console writing to a string buffer.
"""

import io
import time

import pytest
from rich.console import Console

from shellvisor_cli.repl import ShellvisorREPL, follow
from tools.bash_tool import BashToolConfig, create_bash_tool
from tools.process_registry import FAILED, ProcessRegistry
from tools.process_tool import create_process_tool

SCOPE = "cli:test"


@pytest.fixture
def reg():
    registry = ProcessRegistry()
    yield registry
    registry.reset()


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, force_terminal=False, color_system=None)


@pytest.fixture
def repl(reg, console):
    bash = create_bash_tool(registry=reg, scope_key=SCOPE, background_ms=3000)
    return ShellvisorREPL(bash.config, console=console, bash=bash)


def _out(console):
    return console.file.getvalue()


class TestHandleLine:
    def test_process_tool_shares_scope(self, repl):
        assert repl.process.scope_key == SCOPE
        assert repl.process.registry is repl.bash.registry

    def test_plain_command(self, repl, console):
        assert repl.handle_line("echo from-repl") is True
        out = _out(console)
        assert "from-repl" in out
        assert "completed" in out

    def test_output_with_brackets_printed_literally(self, repl, console):
        repl.handle_line("echo '[red]not markup[/]'")
        assert "[red]not markup[/]" in _out(console)

    def test_blank_line(self, repl, console):
        assert repl.handle_line("   ") is True
        assert _out(console) == ""

    def test_quit(self, repl):
        assert repl.handle_line("/quit") is False
        assert repl.handle_line("/exit") is False

    def test_help(self, repl, console):
        repl.handle_line("/help")
        assert "/poll" in _out(console)

    def test_unknown_command(self, repl, console):
        repl.handle_line("/frobnicate")
        assert "Unknown command /frobnicate" in _out(console)

    def test_usage_messages(self, repl, console):
        repl.handle_line("/log")
        repl.handle_line("/poll")
        out = _out(console)
        assert "Usage: /log ID [OFFSET] [LIMIT]" in out
        assert "Usage: /poll ID" in out

    def test_errors_are_printed_not_raised(self, repl, console, reg):
        repl.handle_line("/bg true")
        session = reg.list_sessions(SCOPE)[0]
        assert session.done.wait(5)
        assert repl.handle_line(f"/log {session.id} -1") is True
        assert "offset must be a non-negative integer" in _out(console)

    def test_unknown_session(self, repl, console):
        repl.handle_line("/poll proc_missing")
        assert "No session found for proc_missing" in _out(console)

    def test_config(self, repl, console):
        repl.handle_line("/config")
        assert SCOPE in _out(console)


class TestBackgroundFlow:
    def test_bg_poll_log_ps_remove(self, repl, console, reg):
        repl.handle_line("/bg echo a; echo b")
        sessions = reg.list_sessions(SCOPE)
        assert len(sessions) == 1
        sid = sessions[0].id
        assert sessions[0].done.wait(10)

        repl.handle_line(f"/poll {sid}")
        repl.handle_line(f"/log {sid} 1 1")
        repl.handle_line("/ps")
        out = _out(console)
        assert sid in out
        assert "exited with code 0" in out

        repl.handle_line(f"/remove {sid}")
        assert reg.get(SCOPE, sid) is None

    def test_kill(self, repl, reg):
        repl.handle_line("/bg sleep 30")
        session = reg.list_sessions(SCOPE)[0]
        repl.handle_line(f"/kill {session.id}")
        assert session.done.wait(5)
        assert session.status == FAILED

    def test_write(self, repl, reg):
        repl.handle_line("/bg read x; echo got:$x")
        session = reg.list_sessions(SCOPE)[0]
        repl.handle_line(f"/write {session.id} hello")
        assert session.done.wait(5)
        assert session.log.lines() == ["got:hello"]

    def test_empty_ps(self, repl, console):
        repl.handle_line("/ps")
        assert "No running or recent sessions." in _out(console)

    def test_shutdown_kills_scope(self, repl, reg, console):
        repl.handle_line("/bg sleep 30")
        session = reg.list_sessions(SCOPE)[0]
        assert repl.shutdown() == 1
        assert session.done.wait(5)
        assert "Killed 1" in _out(console)


class TestFollow:
    @pytest.fixture
    def tools(self, reg):
        bash = create_bash_tool(BashToolConfig(scope_key=SCOPE), registry=reg)
        return bash, create_process_tool(registry=reg, scope_key=SCOPE)

    def test_inline_success(self, tools, console):
        bash, process = tools
        assert follow(bash, process, "echo quick", console=console) == 0
        assert "quick" in _out(console)

    def test_inline_exit_code(self, tools, console):
        bash, process = tools
        assert follow(bash, process, "exit 7", console=console) == 7

    def test_follows_background_output(self, tools, console):
        bash, process = tools
        started = time.time()
        code = follow(
            bash, process, "for i in 1 2 3; do echo line$i; sleep 0.2; done",
            background=True, console=console,
        )
        assert code == 0
        out = _out(console)
        assert out.index("line1") < out.index("line2") < out.index("line3")
        assert out.count("line2") == 1
        assert time.time() - started < 10

    def test_timeout_exit_status(self, tools, console):
        bash, process = tools
        assert follow(bash, process, "sleep 30", yield_ms=50, timeout=0.5, console=console) == 1
