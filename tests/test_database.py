"""Tests for the dump/restore commands and the transfer pipeline."""

import shlex
from pathlib import Path

import pytest

from tests.helpers import FakeRunner, make_environment
from wp_sync.commands.database import (
    DatabaseTransferPipeline,
    connection_args,
    dump_command,
    excluded_tables,
    restore_command,
)
from wp_sync.exceptions import ExportFailed, ImportFailed, MissingConfigField
from wp_sync.models import DEVELOPMENT, PRODUCTION, STAGING, TRANSPORT_REMOTE, RunState


class TestCommands:
    """Test command construction."""

    def test_excluded_tables_use_prefix(self):
        """Test the credential tables are qualified with the table prefix."""
        env = make_environment(PRODUCTION, table_prefix="site1_")
        assert excluded_tables(env) == ["site1_users", "site1_usermeta"]

    def test_dump_excludes_credential_tables(self):
        """Test export dumps carry one --ignore-table per excluded table."""
        env = make_environment(PRODUCTION)
        command = dump_command(env, "/tmp/out.sql")

        assert command.startswith("mysqldump --opt --single-transaction ")
        assert "--ignore-table=wp_production.wp_users" in command
        assert "--ignore-table=wp_production.wp_usermeta" in command
        assert command.endswith("wp_production > /tmp/out.sql")

    def test_only_credential_tables_excluded(self):
        """Test no other table is ever excluded."""
        command = dump_command(make_environment(PRODUCTION), "/tmp/out.sql")
        assert command.count("--ignore-table") == 2

    def test_backup_dump_is_complete(self):
        """Test backups keep every table."""
        command = dump_command(make_environment(PRODUCTION), "/tmp/b.sql", exclude=False)
        assert "--ignore-table" not in command

    def test_connection_args_quote_values(self):
        """Test shell metacharacters in credentials are quoted."""
        env = make_environment(DEVELOPMENT, db_user="wp user", db_pass="p$ss;rm")
        args = shlex.split(connection_args(env))

        assert args == ["-h", "127.0.0.1", "-P", "3306", "-u", "wp user", "-pp$ss;rm"]

    def test_empty_password_omitted(self):
        """Test no -p flag is passed without a password."""
        env = make_environment(DEVELOPMENT, db_pass="")
        assert "-p" not in shlex.split(connection_args(env))

    def test_restore_command(self):
        """Test the restore reads the artifact into the target database."""
        command = restore_command(make_environment(STAGING), "/tmp/in.sql")
        assert command.startswith("mysql -h 127.0.0.1 -P 3306 -u wp ")
        assert command.endswith("wp_staging < /tmp/in.sql")


class TestExport:
    """Test exporting a database."""

    @pytest.fixture
    def work_dir(self, tmp_path):
        return tmp_path / "work"

    def test_local_export(self, work_dir):
        """Test a local dump lands in the working directory."""
        runner = FakeRunner()
        state = RunState()
        pipeline = DatabaseTransferPipeline(runner, work_dir, state)

        artifact = pipeline.export(make_environment(DEVELOPMENT))

        assert Path(artifact).parent == work_dir
        assert Path(artifact).name.startswith("wp_sync_export_development_")
        assert Path(artifact).read_text().startswith("-- MySQL dump")
        assert state.export_path == artifact
        assert artifact in state.local_artifacts

    def test_remote_export(self, work_dir):
        """Test a remote dump is downloaded and removed remotely."""
        runner = FakeRunner()
        state = RunState()
        env = make_environment(PRODUCTION, TRANSPORT_REMOTE)

        artifact = DatabaseTransferPipeline(runner, work_dir, state).export(env)

        commands = runner.commands_for(PRODUCTION)
        assert commands[0].startswith("mysqldump")
        remote_file = shlex.split(commands[0])[-1]
        assert remote_file.startswith("/var/www/production/wp_sync_export_production_")
        assert runner.downloads == [(PRODUCTION, remote_file, artifact)]
        assert commands[1] == f"rm -f {remote_file}"
        assert state.remote_artifacts == []
        assert Path(artifact).exists()

    def test_export_failure(self, work_dir):
        """Test a non-zero dump exit raises ExportFailed."""
        runner = FakeRunner(fail_on={"mysqldump": "mysqldump: Got error: 1045"})
        state = RunState()

        with pytest.raises(ExportFailed) as exc_info:
            DatabaseTransferPipeline(runner, work_dir, state).export(make_environment(DEVELOPMENT))

        assert "1045" in str(exc_info.value)
        # Partial artifact stays registered so cleanup removes it
        assert len(state.local_artifacts) == 1
        assert state.export_path is None

    def test_empty_export(self, work_dir):
        """Test a dump that produced nothing is rejected."""
        runner = FakeRunner(dump_output="")

        with pytest.raises(ExportFailed):
            DatabaseTransferPipeline(runner, work_dir, RunState()).export(
                make_environment(DEVELOPMENT)
            )

    def test_missing_credentials(self, work_dir):
        """Test the fields are checked before anything runs."""
        runner = FakeRunner()
        env = make_environment(DEVELOPMENT, db_user=None)

        with pytest.raises(MissingConfigField):
            DatabaseTransferPipeline(runner, work_dir, RunState()).export(env)
        assert runner.commands == []


class TestImport:
    """Test importing an artifact."""

    @pytest.fixture
    def artifact(self, tmp_path):
        path = tmp_path / "wp_sync_export_production_x.sql"
        path.write_text("-- MySQL dump\n")
        return path

    def test_local_import(self, tmp_path, artifact):
        """Test the artifact is restored in place."""
        runner = FakeRunner()
        DatabaseTransferPipeline(runner, tmp_path, RunState()).import_(
            make_environment(DEVELOPMENT), str(artifact)
        )

        assert runner.commands == [
            (DEVELOPMENT, restore_command(make_environment(DEVELOPMENT), str(artifact)))
        ]

    def test_remote_import(self, tmp_path, artifact):
        """Test the artifact is uploaded, restored and removed."""
        runner = FakeRunner()
        state = RunState()
        env = make_environment(STAGING, TRANSPORT_REMOTE)

        DatabaseTransferPipeline(runner, tmp_path, state).import_(env, str(artifact))

        assert len(runner.uploads) == 1
        _, local, remote = runner.uploads[0]
        assert local == str(artifact)
        assert remote.startswith("/var/www/staging/wp_sync_import_staging_")
        assert runner.commands_for(STAGING) == [
            restore_command(env, remote),
            f"rm -f {remote}",
        ]
        assert state.remote_artifacts == []

    def test_missing_artifact(self, tmp_path):
        """Test importing a file that does not exist."""
        runner = FakeRunner()

        with pytest.raises(ImportFailed):
            DatabaseTransferPipeline(runner, tmp_path, RunState()).import_(
                make_environment(DEVELOPMENT), str(tmp_path / "nope.sql")
            )
        assert runner.commands == []

    def test_restore_failure(self, tmp_path, artifact):
        """Test a failing restore raises ImportFailed and keeps the remote copy tracked."""
        runner = FakeRunner(fail_on={"mysql -h": "ERROR 1064"})
        state = RunState()
        env = make_environment(STAGING, TRANSPORT_REMOTE)

        with pytest.raises(ImportFailed):
            DatabaseTransferPipeline(runner, tmp_path, state).import_(env, str(artifact))

        assert len(state.remote_artifacts) == 1
        assert state.remote_artifacts[0][0] == STAGING
