"""Logging setup for the recipes CLI, with secret redaction.

Scheduler responses and command errors end up in the log file verbatim,
and gateway CLIs happily echo tokens. The formatter masks anything that
looks like a credential before it is written.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'

_PREFIX_RE = re.compile(
    r"(?<![A-Za-z0-9_-])("
    r"sk-[A-Za-z0-9_-]{10,}"
    r"|ghp_[A-Za-z0-9]{10,}"
    r"|xox[baprs]-[A-Za-z0-9-]{10,}"
    r")(?![A-Za-z0-9_-])"
)

_ENV_ASSIGN_RE = re.compile(
    r"([A-Z_]*(?:API_?KEY|TOKEN|SECRET|PASSWORD)[A-Z_]*)\s*=\s*(['\"]?)(\S+)\2",
    re.IGNORECASE,
)

_JSON_FIELD_RE = re.compile(
    r'("(?:api_?[Kk]ey|token|secret|password)")\s*:\s*"([^"]+)"',
    re.IGNORECASE,
)

_AUTH_HEADER_RE = re.compile(r"(Authorization:\s*Bearer\s+)(\S+)", re.IGNORECASE)


def _mask_token(token: str) -> str:
    if len(token) < 18:
        return "***"
    return f"{token[:6]}...{token[-4:]}"


def redact_sensitive_text(text: str) -> str:
    """Mask API keys, tokens and passwords in a block of text."""
    if not text:
        return text

    text = _PREFIX_RE.sub(lambda m: _mask_token(m.group(1)), text)
    text = _ENV_ASSIGN_RE.sub(
        lambda m: f"{m.group(1)}={m.group(2)}{_mask_token(m.group(3))}{m.group(2)}", text)
    text = _JSON_FIELD_RE.sub(lambda m: f'{m.group(1)}: "{_mask_token(m.group(2))}"', text)
    text = _AUTH_HEADER_RE.sub(lambda m: m.group(1) + _mask_token(m.group(2)), text)
    return text


class RedactingFormatter(logging.Formatter):
    """Log formatter that redacts secrets from all log messages."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_sensitive_text(super().format(record))


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    """Rotating file log under log_dir plus warnings (or debug) on stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()

    file_handler = RotatingFileHandler(
        log_dir / 'recipes.log',
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(RedactingFormatter(LOG_FORMAT))
    root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(RedactingFormatter('%(levelname)s %(name)s: %(message)s'))
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(console)

    root.setLevel(logging.DEBUG if verbose else logging.INFO)
