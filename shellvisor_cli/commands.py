"""Slash command definitions and autocomplete for the Shellvisor prompt.

Contains the COMMANDS dict, a parser for slash-command lines, and the
SlashCommandCompleter class. These are pure data/UI with no REPL state.
"""

import shlex
from typing import List, Optional, Tuple

from prompt_toolkit.completion import Completer, Completion


COMMANDS = {
    "/help": "Show this help message",
    "/ps": "List sessions in this scope",
    "/poll": "Show status and recent output: /poll ID",
    "/log": "Show output lines: /log ID [OFFSET] [LIMIT]",
    "/tail": "Show the last lines: /tail ID [LIMIT]",
    "/kill": "Terminate a running session: /kill ID",
    "/write": "Send a line to a session's stdin: /write ID TEXT",
    "/remove": "Forget a session (kills it if running): /remove ID",
    "/bg": "Run a command in the background: /bg COMMAND",
    "/config": "Show the active bash tool configuration",
    "/quit": "Exit (also: /exit, /q); running sessions are killed",
}

ALIASES = {
    "/exit": "/quit",
    "/q": "/quit",
    "/list": "/ps",
    "/status": "/poll",
}


def parse_slash(line: str) -> Tuple[str, List[str], str]:
    """Split ``/cmd args...`` into (command, argv, raw-rest).

    ``raw-rest`` is the unparsed text after the command name, used by
    commands such as /bg whose argument is itself a shell command.
    """
    stripped = line.strip()
    name, _, rest = stripped.partition(" ")
    name = ALIASES.get(name.lower(), name.lower())
    try:
        argv = shlex.split(rest)
    except ValueError:
        argv = rest.split()
    return name, argv, rest.strip()


def int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class SlashCommandCompleter(Completer):
    """Autocomplete for /commands in the input area."""

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor
        if not text.startswith("/") or " " in text:
            return
        word = text[1:]
        for cmd, desc in COMMANDS.items():
            cmd_name = cmd[1:]
            if cmd_name.startswith(word):
                yield Completion(
                    cmd_name,
                    start_position=-len(word),
                    display=cmd,
                    display_meta=desc,
                )
