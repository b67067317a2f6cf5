"""Append-only, line-oriented output log for one session."""

import threading
from dataclasses import dataclass
from typing import List, Optional

from tools.shell_utils import sanitize_binary_output

# Window returned by a log/poll query that names neither offset nor limit
DEFAULT_TAIL_LINES = 200


@dataclass(frozen=True)
class LogSlice:
    lines: List[str]
    total_lines: int
    offset: int                 # index of lines[0] in the full log

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class LogBuffer:
    """
    Ordered sequence of sanitized output lines.

    Output arrives in arbitrary chunks; complete lines are committed as soon
    as their newline is seen and a trailing partial line is held back until
    the next chunk or until ``freeze()``. Committed lines are never edited or
    removed. After ``freeze()`` the buffer rejects further writes.
    """

    def __init__(self):
        self._lines: List[str] = []
        self._partial = ""
        self._frozen = False
        self._lock = threading.Lock()

    def append(self, chunk) -> int:
        """Append raw output (bytes or str). Returns the number of lines committed."""
        text = sanitize_binary_output(chunk)
        if not text:
            return 0
        with self._lock:
            if self._frozen:
                return 0
            pieces = (self._partial + text).split("\n")
            self._partial = pieces.pop()
            self._lines.extend(p.rstrip() for p in pieces)
            return len(pieces)

    def freeze(self) -> None:
        """Flush any partial line and make the buffer immutable."""
        with self._lock:
            if self._frozen:
                return
            if self._partial:
                self._lines.append(self._partial.rstrip())
                self._partial = ""
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def slice(self, offset: Optional[int] = None, limit: Optional[int] = None) -> LogSlice:
        """
        Return a window of the log.

        - neither given: the last DEFAULT_TAIL_LINES lines
        - limit only:    the last ``limit`` lines
        - offset given:  ``limit`` lines (default DEFAULT_TAIL_LINES) starting
                         at zero-based index ``offset``
        """
        if offset is not None and offset < 0:
            raise ValueError("offset must be >= 0")
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")

        with self._lock:
            total = len(self._lines)
            if offset is None:
                count = DEFAULT_TAIL_LINES if limit is None else limit
                start = max(total - count, 0)
                end = total
            else:
                count = DEFAULT_TAIL_LINES if limit is None else limit
                start = min(offset, total)
                end = min(start + count, total)
            return LogSlice(lines=self._lines[start:end], total_lines=total, offset=start)
