"""Tests for the pre-sync backup."""

import re
import shlex
from pathlib import Path

import pytest

from tests.helpers import FakeRunner, make_environment
from wp_sync.commands.backup import BackupManager
from wp_sync.exceptions import BackupVerificationFailed, DataIntegrityError
from wp_sync.models import DEVELOPMENT, PRODUCTION, TRANSPORT_REMOTE, RunState

BACKUP_NAME = re.compile(r"^backup_(\w+)_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}\.sql$")


class TestBackupManager:
    """Test BackupManager functionality."""

    def test_local_backup(self, tmp_path):
        """Test a local backup is written to the working directory."""
        runner = FakeRunner()
        state = RunState()

        path = BackupManager(runner, tmp_path, state).backup(make_environment(DEVELOPMENT))

        assert Path(path).parent == tmp_path
        assert BACKUP_NAME.match(Path(path).name).group(1) == DEVELOPMENT
        assert Path(path).stat().st_size > 0
        assert state.backup_path == path

    def test_backup_is_full_dump(self, tmp_path):
        """Test backups do not skip the credential tables."""
        runner = FakeRunner()
        BackupManager(runner, tmp_path).backup(make_environment(DEVELOPMENT))

        command = runner.commands[0][1]
        assert command.startswith("mysqldump --opt --single-transaction")
        assert "--ignore-table" not in command

    def test_remote_backup_stays_remote(self, tmp_path):
        """Test a remote backup is placed in the install path and verified there."""
        runner = FakeRunner()
        env = make_environment(PRODUCTION, TRANSPORT_REMOTE)

        path = BackupManager(runner, tmp_path).backup(env)

        assert path.startswith("/var/www/production/backup_production_")
        commands = runner.commands_for(PRODUCTION)
        assert shlex.split(commands[0])[-1] == path
        assert commands[1] == f"test -s {path}"
        assert runner.downloads == []

    def test_backups_not_tracked_for_cleanup(self, tmp_path):
        """Test backups are never registered as temporary artifacts."""
        state = RunState()
        BackupManager(FakeRunner(), tmp_path, state).backup(make_environment(DEVELOPMENT))

        assert state.local_artifacts == []
        assert state.remote_artifacts == []

    def test_dump_failure(self, tmp_path):
        """Test a failing dump raises BackupVerificationFailed."""
        runner = FakeRunner(fail_on={"mysqldump": "Access denied"})

        with pytest.raises(BackupVerificationFailed) as exc_info:
            BackupManager(runner, tmp_path).backup(make_environment(DEVELOPMENT))
        assert isinstance(exc_info.value, DataIntegrityError)

    def test_empty_backup_rejected(self, tmp_path):
        """Test an empty local backup fails verification."""
        runner = FakeRunner(dump_output="")

        with pytest.raises(BackupVerificationFailed):
            BackupManager(runner, tmp_path).backup(make_environment(DEVELOPMENT))

    def test_remote_verification_failure(self, tmp_path):
        """Test a remote backup that is missing afterwards fails verification."""
        runner = FakeRunner(fail_on={"test -s": ""})
        state = RunState()

        with pytest.raises(BackupVerificationFailed):
            BackupManager(runner, tmp_path, state).backup(
                make_environment(PRODUCTION, TRANSPORT_REMOTE)
            )
        assert state.backup_path is None
