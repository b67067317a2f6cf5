"""Live tests for the process tool -- poll, list, log slicing, kill, write,
remove, and scope isolation between callers."""

import pytest

from tools.bash_tool import create_bash_tool
from tools.errors import ToolInputError
from tools.process_registry import COMPLETED, FAILED, RUNNING, ProcessRegistry
from tools.process_tool import create_process_tool
from tools.tool_result import (
    ActionDetails,
    FinishedDetails,
    LogDetails,
    NotFoundDetails,
    RunningDetails,
    SessionListDetails,
)

SCOPE = "agent:alpha"


@pytest.fixture
def reg():
    registry = ProcessRegistry()
    yield registry
    registry.reset()


@pytest.fixture
def bash(reg):
    return create_bash_tool(registry=reg, scope_key=SCOPE)


@pytest.fixture
def process(reg):
    return create_process_tool(registry=reg, scope_key=SCOPE)


def _start(bash, command, **extra):
    result = bash.execute("start", {"command": command, "background": True, **extra})
    assert result.status == RUNNING
    return result.details.session_id


def _finish(reg, session_id, timeout=10):
    session = reg.get(SCOPE, session_id)
    assert session.done.wait(timeout)
    return session


class TestPoll:
    def test_running_then_completed(self, bash, process, reg):
        sid = _start(bash, "echo one; sleep 1; echo two")
        first = process.execute("p", {"action": "poll", "sessionId": sid})
        assert isinstance(first.details, RunningDetails)
        assert "still running" in first.text_output

        _finish(reg, sid)
        done = process.execute("p", {"action": "poll", "sessionId": sid})
        assert isinstance(done.details, FinishedDetails)
        assert done.status == COMPLETED
        assert done.details.exit_code == 0
        assert done.details.session_id == sid
        assert done.text_output.startswith("one\ntwo")
        assert "exited with code 0" in done.text_output

    def test_poll_is_idempotent_after_finish(self, bash, process, reg):
        sid = _start(bash, "echo x; exit 2")
        _finish(reg, sid)
        a = process.execute("p", {"action": "poll", "sessionId": sid})
        b = process.execute("p", {"action": "poll", "sessionId": sid})
        assert a.status == b.status == FAILED
        assert a.details.exit_code == b.details.exit_code == 2
        assert a.text_output == b.text_output

    def test_snake_case_session_id(self, bash, process, reg):
        sid = _start(bash, "true")
        _finish(reg, sid)
        assert process.execute("p", {"action": "poll", "session_id": sid}).status == COMPLETED

    def test_poll_shows_last_200_lines(self, bash, process, reg):
        sid = _start(bash, "seq 1 300")
        _finish(reg, sid)
        result = process.execute("p", {"action": "poll", "sessionId": sid})
        lines = result.text_output.split("\n\n")[0].splitlines()
        assert len(lines) == 200
        assert lines[0] == "101"
        assert lines[-1] == "300"
        assert result.details.total_lines == 300


class TestLog:
    @pytest.fixture
    def finished(self, bash, reg):
        sid = _start(bash, "seq 0 249")
        _finish(reg, sid)
        return sid

    def test_default_tail(self, process, finished):
        result = process.execute("l", {"action": "log", "sessionId": finished})
        lines = result.text_output.splitlines()
        assert len(lines) == 200
        assert lines[0] == "50"
        assert isinstance(result.details, LogDetails)
        assert result.details.total_lines == 250
        assert result.details.offset == 50
        assert result.details.limit == 200

    def test_limit_only(self, process, finished):
        result = process.execute("l", {"action": "log", "sessionId": finished, "limit": 3})
        assert result.text_output.splitlines() == ["247", "248", "249"]

    def test_offset_and_limit(self, process, finished):
        result = process.execute("l", {"action": "log", "sessionId": finished, "offset": 10, "limit": 5})
        assert result.text_output.splitlines() == ["10", "11", "12", "13", "14"]
        assert result.details.offset == 10

    def test_offset_past_end(self, process, finished):
        result = process.execute("l", {"action": "log", "sessionId": finished, "offset": 1000})
        assert result.text_output == "(no output)"

    @pytest.mark.parametrize("args", [{"offset": -1}, {"limit": -5}, {"offset": "abc"}, {"limit": True}])
    def test_invalid_window(self, process, finished, args):
        with pytest.raises(ToolInputError):
            process.execute("l", {"action": "log", "sessionId": finished, **args})

    def test_wire_shape(self, process, finished):
        wire = process.execute("l", {"action": "log", "sessionId": finished, "limit": 1}).to_dict()
        assert wire["details"]["action"] == "log"
        assert wire["details"]["sessionId"] == finished
        assert wire["details"]["totalLines"] == 250


class TestSmallLogs:
    def test_limit_without_offset_is_tail(self, bash, process, reg):
        sid = _start(bash, "printf 'one\ntwo\nthree\n'")
        _finish(reg, sid)
        result = process.execute("l", {"action": "log", "sessionId": sid, "limit": 2})
        assert result.text_output.splitlines() == ["two", "three"]
        assert result.details.total_lines == 3

    def test_offset_window(self, bash, process, reg):
        sid = _start(bash, "printf 'alpha\nbeta\ngamma\n'")
        _finish(reg, sid)
        result = process.execute("l", {"action": "log", "sessionId": sid, "offset": 1, "limit": 1})
        assert result.text_output == "beta"


class TestList:
    def test_empty(self, process):
        result = process.execute("l", {"action": "list"})
        assert isinstance(result.details, SessionListDetails)
        assert result.details.sessions == []
        assert result.text_output == "No running or recent sessions."

    def test_lists_running_and_finished(self, bash, process, reg):
        done_id = _start(bash, "echo finished")
        _finish(reg, done_id)
        live_id = _start(bash, "sleep 5")
        result = process.execute("l", {"action": "list"})
        by_id = {s.session_id: s for s in result.details.sessions}
        assert by_id[done_id].status == COMPLETED
        assert by_id[done_id].tail == "finished"
        assert by_id[live_id].status == RUNNING
        assert [s.session_id for s in result.details.sessions] == [done_id, live_id]
        assert live_id in result.text_output


class TestScopeIsolation:
    def test_foreign_scope_looks_unknown(self, bash, reg):
        sid = _start(bash, "sleep 5")
        other = create_process_tool(registry=reg, scope_key="agent:beta")

        foreign = other.execute("p", {"action": "poll", "sessionId": sid})
        unknown = other.execute("p", {"action": "poll", "sessionId": "proc_doesnotexist"})
        assert isinstance(foreign.details, NotFoundDetails)
        assert foreign.status == FAILED
        assert foreign.to_dict()["details"].keys() == unknown.to_dict()["details"].keys()
        assert foreign.text_output == f"No session found for {sid}"

        assert other.execute("l", {"action": "list"}).details.sessions == []
        for action in ("log", "kill", "write", "remove"):
            assert isinstance(other.execute("x", {"action": action, "sessionId": sid}).details, NotFoundDetails)
        # untouched in its own scope
        assert reg.get(SCOPE, sid).status == RUNNING


class TestKill:
    def test_kill_running(self, bash, process, reg):
        sid = _start(bash, "sleep 30")
        result = process.execute("k", {"action": "kill", "sessionId": sid})
        assert isinstance(result.details, ActionDetails)
        assert result.status == FAILED
        session = _finish(reg, sid)
        assert session.status == FAILED
        assert session.failure_reason == "killed"
        assert session.exit_code is None

        poll = process.execute("p", {"action": "poll", "sessionId": sid})
        assert "was killed" in poll.text_output

    def test_kill_finished_is_noop(self, bash, process, reg):
        sid = _start(bash, "true")
        _finish(reg, sid)
        result = process.execute("k", {"action": "kill", "sessionId": sid})
        assert result.details.note == "not running"
        assert reg.get(SCOPE, sid).status == COMPLETED


class TestWrite:
    def test_write_to_stdin(self, bash, process, reg):
        sid = _start(bash, "read line; echo got:$line")
        result = process.execute("w", {"action": "write", "sessionId": sid, "data": "hello\n"})
        assert result.details.bytes_written == 6
        session = _finish(reg, sid)
        assert session.log.lines() == ["got:hello"]

    def test_write_eof(self, bash, process, reg):
        sid = _start(bash, "wc -l")
        process.execute("w", {"action": "write", "sessionId": sid, "data": "a\nb\n", "eof": True})
        session = _finish(reg, sid)
        assert session.log.lines()[0].strip() == "2"

    def test_write_to_finished(self, bash, process, reg):
        sid = _start(bash, "true")
        _finish(reg, sid)
        result = process.execute("w", {"action": "write", "sessionId": sid, "data": "x"})
        assert result.details.note == "not running"

    def test_data_must_be_string(self, bash, process):
        sid = _start(bash, "sleep 5")
        with pytest.raises(ToolInputError):
            process.execute("w", {"action": "write", "sessionId": sid, "data": 5})


class TestRemove:
    def test_remove_finished(self, bash, process, reg):
        sid = _start(bash, "true")
        _finish(reg, sid)
        result = process.execute("r", {"action": "remove", "sessionId": sid})
        assert result.details.action == "remove"
        assert reg.get(SCOPE, sid) is None
        assert isinstance(process.execute("p", {"action": "poll", "sessionId": sid}).details, NotFoundDetails)

    def test_remove_running_kills_it(self, bash, process, reg):
        sid = _start(bash, "sleep 30")
        session = reg.get(SCOPE, sid)
        process.execute("r", {"action": "remove", "sessionId": sid})
        assert session.done.wait(5)
        assert session.status == FAILED
        assert reg.get(SCOPE, sid) is None


class TestValidation:
    def test_unknown_action(self, process):
        with pytest.raises(ToolInputError):
            process.execute("x", {"action": "explode"})

    def test_session_id_required(self, process):
        with pytest.raises(ToolInputError):
            process.execute("x", {"action": "poll"})
