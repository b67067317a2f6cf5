"""Logging setup for the Shellvisor CLI.

Commands routinely carry credentials (``curl -H "Authorization: Bearer ..."``,
``export API_KEY=...``), and the engine logs command text, so every record
written to disk goes through ``RedactingFormatter``. Short tokens (< 18 chars)
are fully masked; longer ones keep the first 6 and last 4 characters.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from shellvisor_cli.config import ensure_shellvisor_home, get_shellvisor_home

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Known API key prefixes -- match the prefix + contiguous token chars
_PREFIX_PATTERNS = [
    r"sk-[A-Za-z0-9_-]{10,}",           # OpenAI-style
    r"ghp_[A-Za-z0-9]{10,}",            # GitHub PAT (classic)
    r"github_pat_[A-Za-z0-9_]{10,}",    # GitHub PAT (fine-grained)
    r"xox[baprs]-[A-Za-z0-9-]{10,}",    # Slack tokens
    r"AKIA[A-Z0-9]{16}",                # AWS access key ids
]

_PREFIX_RE = re.compile(
    r"(?<![A-Za-z0-9_-])(" + "|".join(_PREFIX_PATTERNS) + r")(?![A-Za-z0-9_-])"
)

# KEY=value where KEY looks secret
_SECRET_ENV_NAMES = r"(?:API_?KEY|TOKEN|SECRET|PASSWORD|PASSWD|CREDENTIAL|AUTH)"
_ENV_ASSIGN_RE = re.compile(
    rf"([A-Z_]*{_SECRET_ENV_NAMES}[A-Z_]*)\s*=\s*(['\"]?)(\S+)\2",
    re.IGNORECASE,
)

_AUTH_HEADER_RE = re.compile(
    r"(Authorization:\s*(?:Bearer|Basic|token)\s+)(\S+)",
    re.IGNORECASE,
)

_URL_CREDENTIALS_RE = re.compile(r"(\w+://[^/\s:@]+:)([^@\s]+)(@)")


def _mask_token(token: str) -> str:
    if len(token) < 18:
        return "***"
    return f"{token[:6]}...{token[-4:]}"


def redact_sensitive_text(text: str) -> str:
    """Apply all redaction patterns. Non-matching text passes through unchanged."""
    if not text:
        return text

    text = _PREFIX_RE.sub(lambda m: _mask_token(m.group(1)), text)

    def _redact_env(m):
        name, quote, value = m.group(1), m.group(2), m.group(3)
        return f"{name}={quote}{_mask_token(value)}{quote}"
    text = _ENV_ASSIGN_RE.sub(_redact_env, text)

    text = _AUTH_HEADER_RE.sub(lambda m: m.group(1) + _mask_token(m.group(2)), text)
    text = _URL_CREDENTIALS_RE.sub(lambda m: m.group(1) + "***" + m.group(3), text)
    return text


class RedactingFormatter(logging.Formatter):
    """Log formatter that redacts secrets from all log messages."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_sensitive_text(super().format(record))


def setup_logging(verbose: bool = False, level: str = "INFO", log_dir: Optional[Path] = None) -> Path:
    """
    Configure root logging: a rotating file log under <home>/logs, plus a
    console handler when ``verbose`` is set. Returns the log file path.
    """
    if log_dir is None:
        ensure_shellvisor_home()
        log_dir = get_shellvisor_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "shellvisor.log"

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_shellvisor", False):
            root.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(RedactingFormatter(LOG_FORMAT))
    file_handler._shellvisor = True
    root.addHandler(file_handler)

    if verbose:
        console = logging.StreamHandler()
        console.setFormatter(RedactingFormatter("%(levelname)s %(name)s: %(message)s"))
        console._shellvisor = True
        root.addHandler(console)
        root.setLevel(logging.DEBUG)
    else:
        root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    return log_path
