"""Tests for slash-command parsing and completion."""

from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document

from shellvisor_cli.commands import COMMANDS, SlashCommandCompleter, int_or_none, parse_slash


class TestParseSlash:
    def test_name_and_args(self):
        assert parse_slash("/log proc_1 10 5") == ("/log", ["proc_1", "10", "5"], "proc_1 10 5")

    def test_aliases(self):
        assert parse_slash("/exit")[0] == "/quit"
        assert parse_slash("/Q")[0] == "/quit"
        assert parse_slash("/list")[0] == "/ps"

    def test_raw_rest_preserved(self):
        name, _, rest = parse_slash("/bg  sleep 5 && echo 'done now'")
        assert name == "/bg"
        assert rest == "sleep 5 && echo 'done now'"

    def test_unbalanced_quotes(self):
        assert parse_slash("/write proc_1 it's")[1] == ["proc_1", "it's"]


class TestIntOrNone:
    def test_values(self):
        assert int_or_none("12") == 12
        assert int_or_none("x") is None
        assert int_or_none(None) is None


class TestCompleter:
    def _complete(self, text):
        doc = Document(text, len(text))
        return [c.text for c in SlashCommandCompleter().get_completions(doc, CompleteEvent())]

    def test_prefix(self):
        assert self._complete("/p") == ["ps", "poll"]

    def test_all_commands(self):
        assert len(self._complete("/")) == len(COMMANDS)

    def test_no_completion_for_shell_input(self):
        assert self._complete("echo") == []
        assert self._complete("/log ") == []
