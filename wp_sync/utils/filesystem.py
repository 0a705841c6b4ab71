"""
Utilities for filesystem operations
"""

import os
import stat
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

EXPORT_PREFIX = "wp_sync_export_"
IMPORT_PREFIX = "wp_sync_import_"


def ensure_dir_exists(directory: Path) -> None:
    """
    Ensures that a directory exists, creating it if necessary

    Args:
        directory: Directory path
    """
    directory.mkdir(parents=True, exist_ok=True)


def write_owner_only(path: Path, content: str) -> None:
    """
    Writes a small text file and restricts it to the owner (0600)

    Args:
        path: File to (over)write
        content: Text content
    """
    ensure_dir_exists(path.parent)
    fd = os.open(str(path), os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)


def permission_bits(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def is_owner_only(path: Path) -> bool:
    """True when neither group nor others have any permission on the path."""
    return permission_bits(path) & 0o077 == 0


def backup_filename(environment: str, when: Optional[float] = None) -> str:
    """backup_<environment>_<YYYY-mm-dd_HH-MM-SS>.sql"""
    stamp = time.strftime("%Y-%m-%d_%H-%M-%S", time.localtime(when))
    return f"backup_{environment}_{stamp}.sql"


def artifact_filename(prefix: str, environment: str) -> str:
    """
    Unique name for a temporary dump

    Microseconds keep rapid sequential runs from colliding.
    """
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    return f"{prefix}{environment}_{stamp}.sql"


def join_remote(base: str, name: str) -> str:
    """Joins a remote directory and a file name avoiding double slashes."""
    if base.endswith("/"):
        return f"{base}{name}"
    return f"{base}/{name}"


def file_is_non_empty(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def find_stale_artifacts(work_dir: Path, older_than: Optional[float] = None) -> List[Path]:
    """
    Temporary dumps left behind in the working directory

    Interrupted runs leave these on disk; the next run's cleanup removes them.

    Args:
        work_dir: Directory holding the local artifacts
        older_than: Only files last modified before this Unix timestamp
    """
    if not work_dir.is_dir():
        return []
    found = []
    for prefix in (EXPORT_PREFIX, IMPORT_PREFIX):
        for path in sorted(work_dir.glob(f"{prefix}*.sql")):
            try:
                modified = path.stat().st_mtime
            except FileNotFoundError:
                continue
            if older_than is None or modified < older_than:
                found.append(path)
    return found
