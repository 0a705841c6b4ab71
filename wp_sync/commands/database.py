"""
Database transfer between environments

Exports the source database (without the credential tables) to a SQL
artifact and imports that artifact into the target database. Remote
artifacts are moved through the local working directory over SFTP.
"""

import shlex
from pathlib import Path
from typing import List, Optional

from wp_sync.environments import EnvironmentResolver
from wp_sync.exceptions import CommandExecutionFailed, ExportFailed, ImportFailed
from wp_sync.models import EnvironmentConfig, RunState
from wp_sync.utils.audit import get_audit_logger
from wp_sync.utils.filesystem import (
    EXPORT_PREFIX,
    IMPORT_PREFIX,
    artifact_filename,
    ensure_dir_exists,
    file_is_non_empty,
    join_remote,
)

# Tables holding logins and user capabilities. They are skipped by name
# (qualified with the table prefix); every other table, including ones
# added to the schema later, is synced.
EXCLUDED_TABLES = ("users", "usermeta")

DB_FIELDS = ("db_host", "db_name", "db_user", "db_pass")


def connection_args(environment: EnvironmentConfig) -> str:
    """
    Connection flags shared by mysqldump and mysql

    The password goes in as -p<secret>; the audit log masks it.
    """
    args = [
        f"-h {shlex.quote(environment.db_host)}",
        f"-P {int(environment.db_port)}",
        f"-u {shlex.quote(environment.db_user)}",
    ]
    if environment.db_pass:
        args.append(f"-p{shlex.quote(environment.db_pass)}")
    return " ".join(args)


def excluded_tables(environment: EnvironmentConfig) -> List[str]:
    prefix = environment.table_prefix or ""
    return [f"{prefix}{table}" for table in EXCLUDED_TABLES]


def ignore_table_flags(environment: EnvironmentConfig) -> str:
    return " ".join(
        f"--ignore-table={shlex.quote(f'{environment.db_name}.{table}')}"
        for table in excluded_tables(environment)
    )


def dump_command(environment: EnvironmentConfig, output_file: str, exclude: bool = True) -> str:
    """
    Builds the mysqldump command writing to output_file

    Args:
        environment: Environment whose database is dumped
        output_file: Path (on the environment's host) of the SQL artifact
        exclude: If True, adds --ignore-table for every excluded table
    """
    parts = ["mysqldump --opt --single-transaction", connection_args(environment)]
    if exclude:
        parts.append(ignore_table_flags(environment))
    parts.append(shlex.quote(environment.db_name))
    return f"{' '.join(parts)} > {shlex.quote(output_file)}"


def restore_command(environment: EnvironmentConfig, input_file: str) -> str:
    return (
        f"mysql {connection_args(environment)} {shlex.quote(environment.db_name)}"
        f" < {shlex.quote(input_file)}"
    )


class DatabaseTransferPipeline:
    """
    Moves a database from one environment to another through a SQL artifact
    """

    def __init__(self, runner, work_dir: Path, run_state: RunState, verbose: bool = False):
        self.runner = runner
        self.work_dir = Path(work_dir)
        self.run_state = run_state
        self.verbose = verbose
        self.audit = get_audit_logger()

    def export(self, environment: EnvironmentConfig) -> str:
        """
        Exports the environment's database without the excluded tables

        Args:
            environment: Source environment

        Returns:
            str: Local path of the SQL artifact

        Raises:
            ExportFailed: If the dump fails or produces no file
        """
        EnvironmentResolver.require(environment, DB_FIELDS)
        print(f"📤 Exporting database '{environment.db_name}' from {environment.name}...")
        if self.verbose:
            print(f"   - Excluding tables: {', '.join(excluded_tables(environment))}")

        ensure_dir_exists(self.work_dir)
        name = artifact_filename(EXPORT_PREFIX, environment.name)
        local_file = self.work_dir / name
        # Registered before the dump runs so a partial file is cleaned up too
        self.run_state.track_local(str(local_file))

        if environment.is_remote:
            remote_file = join_remote(environment.path, name)
            self.run_state.track_remote(environment.name, remote_file)
            self._dump(environment, remote_file)
            self.runner.download(environment, remote_file, local_file)
            self._remove_remote(environment, remote_file)
        else:
            self._dump(environment, str(local_file))

        if not file_is_non_empty(local_file):
            raise ExportFailed(
                f"Export of {environment.name} produced no data: {local_file}",
                {"environment": environment.name, "artifact": str(local_file)},
            )

        self.run_state.export_path = str(local_file)
        size_mb = local_file.stat().st_size / (1024 * 1024)
        print(f"✅ Database exported to {local_file} ({size_mb:.2f} MB)")
        self.audit.info(f"Exported {environment.name} to {local_file}")
        return str(local_file)

    def _dump(self, environment: EnvironmentConfig, output_file: str) -> None:
        try:
            self.runner.run(environment, dump_command(environment, output_file))
        except CommandExecutionFailed as e:
            raise ExportFailed(
                f"Export failed on {environment.name}: {e.output}",
                {"environment": environment.name, "command": e.command},
            ) from e

    def import_(self, environment: EnvironmentConfig, artifact: str) -> None:
        """
        Imports a SQL artifact into the environment's database

        Not transactional: a failure midway can leave the target partially
        overwritten. The pre-sync backup is the recovery path.

        Args:
            environment: Target environment
            artifact: Local path of the SQL artifact

        Raises:
            ImportFailed: If the artifact is missing or the restore fails
        """
        EnvironmentResolver.require(environment, DB_FIELDS)
        local_file = Path(artifact)
        if not file_is_non_empty(local_file):
            raise ImportFailed(
                f"SQL file not found or empty: {artifact}",
                {"environment": environment.name, "artifact": artifact},
            )

        print(f"📥 Importing database into {environment.name} ('{environment.db_name}')...")

        if environment.is_remote:
            remote_file = join_remote(
                environment.path, artifact_filename(IMPORT_PREFIX, environment.name)
            )
            self.run_state.track_remote(environment.name, remote_file)
            self.runner.upload(environment, local_file, remote_file)
            self._restore(environment, remote_file)
            self._remove_remote(environment, remote_file)
        else:
            self._restore(environment, str(local_file))

        print(f"✅ Database imported into {environment.name}")
        self.audit.info(f"Imported {artifact} into {environment.name}")

    def _restore(self, environment: EnvironmentConfig, input_file: str) -> None:
        try:
            self.runner.run(environment, restore_command(environment, input_file))
        except CommandExecutionFailed as e:
            raise ImportFailed(
                f"Import failed on {environment.name}: {e.output}",
                {"environment": environment.name, "command": e.command},
            ) from e

    def _remove_remote(self, environment: EnvironmentConfig, remote_file: str) -> None:
        self.runner.run(environment, f"rm -f {shlex.quote(remote_file)}")
        entry = (environment.name, remote_file)
        if entry in self.run_state.remote_artifacts:
            self.run_state.remote_artifacts.remove(entry)
