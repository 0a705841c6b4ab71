"""
Audit log for sync runs

Every command, stage transition and error is appended to the audit log as
a timestamped line. Secrets never reach the file: a filter masks them on
the record before any handler formats it.
"""

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Iterable, List, Optional

AUDIT_LOGGER_NAME = "wp_sync.audit"
MASK = "********"

# One shell word: quoted and unquoted pieces up to the next unquoted space
_SHELL_WORD = r"((?:'[^']*'|\"[^\"]*\"|[^\s'\"])+)"

# -p<secret>, --password=<secret>, --password <secret>, MYSQL_PWD=<secret>
_SECRET_PATTERNS = [
    re.compile(r"(?<![\w-])(-p)(?!\s)" + _SHELL_WORD),
    re.compile(r"(--password[= ])" + _SHELL_WORD),
    re.compile(r"(MYSQL_PWD=)" + _SHELL_WORD),
    re.compile(r"(password=)(\S+)", re.IGNORECASE),
]


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """
    Masks credentials in a piece of text

    Args:
        text: Text to redact (command line, output, error message)
        secrets: Literal secret values that must never appear

    Returns:
        str: Text with every secret replaced by a mask
    """
    if not text:
        return text

    # Shell-quoted forms too: quoting splits a secret containing '
    forms = set()
    for secret in secrets:
        if secret:
            forms.update((secret, shlex.quote(secret)))

    # Longest first so a secret containing another one is fully masked
    for form in sorted(forms, key=len, reverse=True):
        text = text.replace(form, MASK)

    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}{MASK}", text)

    return text


class RedactingFilter(logging.Filter):
    """Rewrites the log record so the formatted message is already redacted."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets: List[str] = [s for s in secrets if s]

    def add_secret(self, secret: Optional[str]) -> None:
        if secret and secret not in self.secrets:
            self.secrets.append(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = redact(message, self.secrets)
        record.args = None
        return True


def _owner_only_file(path: Path) -> None:
    """Creates the log file with 0600 if needed and tightens existing permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        fd = os.open(str(path), os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o600)
        os.close(fd)
    os.chmod(path, 0o600)


def setup_audit_log(log_file: Optional[str], secrets: Iterable[str] = ()) -> logging.Logger:
    """
    Configures the audit logger

    Args:
        log_file: Path of the append-only audit file (None keeps only in-memory handlers)
        secrets: Secrets to redact from every line

    Returns:
        logging.Logger: The configured audit logger
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for existing in list(logger.filters):
        logger.removeFilter(existing)

    logger.addFilter(RedactingFilter(secrets))

    if log_file:
        path = Path(log_file)
        _owner_only_file(path)
        handler = logging.FileHandler(str(path), mode="a", encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(handler)
    else:
        logger.addHandler(logging.NullHandler())

    return logger


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)


def register_secret(secret: Optional[str]) -> None:
    """Adds a secret discovered after setup (e.g. from wp-config.php) to the redaction list."""
    for existing in get_audit_logger().filters:
        if isinstance(existing, RedactingFilter):
            existing.add_secret(secret)
