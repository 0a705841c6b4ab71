"""
Pre-sync backup of the target database
"""

import shlex
import time
from pathlib import Path
from typing import Optional

from wp_sync.commands.database import DB_FIELDS, dump_command
from wp_sync.environments import EnvironmentResolver
from wp_sync.exceptions import BackupVerificationFailed, CommandExecutionFailed
from wp_sync.models import EnvironmentConfig, RunState
from wp_sync.utils.audit import get_audit_logger
from wp_sync.utils.filesystem import (
    backup_filename,
    ensure_dir_exists,
    file_is_non_empty,
    join_remote,
)


class BackupManager:
    """
    Creates a full, verified dump of an environment before it is overwritten

    Remote backups stay in the environment's install path, local ones in the
    working directory. Backups are never removed by cleanup.
    """

    def __init__(self, runner, work_dir: Path, run_state: Optional[RunState] = None):
        self.runner = runner
        self.work_dir = Path(work_dir)
        self.run_state = run_state
        self.audit = get_audit_logger()

    def backup(self, environment: EnvironmentConfig) -> str:
        """
        Dumps the whole database of the environment

        Args:
            environment: Environment about to be overwritten

        Returns:
            str: Path of the backup (remote path for remote environments)

        Raises:
            BackupVerificationFailed: If the dump fails or the file is missing or empty
        """
        EnvironmentResolver.require(environment, DB_FIELDS)
        name = backup_filename(environment.name, time.time())
        print(f"📦 Creating backup of {environment.name} database...")

        if environment.is_remote:
            backup_path = join_remote(environment.path, name)
        else:
            ensure_dir_exists(self.work_dir)
            backup_path = str(self.work_dir / name)

        try:
            self.runner.run(environment, dump_command(environment, backup_path, exclude=False))
        except CommandExecutionFailed as e:
            raise BackupVerificationFailed(
                f"Backup of {environment.name} failed: {e.output}",
                {"environment": environment.name, "backup": backup_path},
            ) from e

        if not self._verify(environment, backup_path):
            raise BackupVerificationFailed(
                f"Backup of {environment.name} could not be verified: {backup_path}",
                {"environment": environment.name, "backup": backup_path},
            )

        if self.run_state is not None:
            self.run_state.backup_path = backup_path
        print(f"✅ Backup created: {backup_path}")
        self.audit.info(f"Backup created: {environment.name} -> {backup_path}")
        return backup_path

    def _verify(self, environment: EnvironmentConfig, backup_path: str) -> bool:
        if environment.is_remote:
            result = self.runner.run(
                environment, f"test -s {shlex.quote(backup_path)}", check=False
            )
            return result.ok
        return file_is_non_empty(Path(backup_path))
