"""Test doubles and builders shared by the test modules."""

import shlex
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from wp_sync.exceptions import CommandExecutionFailed
from wp_sync.models import (
    TRANSPORT_LOCAL,
    TRANSPORT_REMOTE,
    CommandResult,
    EnvironmentConfig,
)

WP_CONFIG = """<?php
define( 'DB_NAME', 'wp_discovered' );
define( 'DB_USER', 'discovered_user' );
define( 'DB_PASSWORD', 'd1sc0vered-pass' );
define( 'DB_HOST', 'db.internal:3307' );
$table_prefix = 'wpx_';
"""


def make_environment(name: str, transport: str = TRANSPORT_LOCAL, **overrides) -> EnvironmentConfig:
    """Build a fully configured environment record."""
    values = {
        "transport": transport,
        "db_host": "127.0.0.1",
        "db_port": 3306,
        "db_name": f"wp_{name}",
        "db_user": "wp",
        "db_pass": f"{name}-s3cret",
        "site_url": f"https://{name}.example.test",
        "table_prefix": "wp_",
    }
    if transport == TRANSPORT_REMOTE:
        values.update(
            {
                "ssh_host": f"{name}.example.test",
                "ssh_user": "deploy",
                "path": f"/var/www/{name}",
            }
        )
    values.update(overrides)
    return EnvironmentConfig(name=name, **values)


def _redirect_target(command: str, operator: str) -> Optional[str]:
    tokens = shlex.split(command)
    if operator in tokens:
        return tokens[tokens.index(operator) + 1]
    return None


class FakeRunner:
    """
    Stands in for CommandRunner

    Records every command, writes dump output where mysqldump would and
    fails any command containing one of the ``fail_on`` fragments.
    """

    def __init__(
        self,
        dump_output: str = "-- MySQL dump\nINSERT INTO wp_posts VALUES (1);\n",
        fail_on: Optional[Dict[str, str]] = None,
        missing: Tuple[str, ...] = (),
        wp_config: str = WP_CONFIG,
    ):
        self.dump_output = dump_output
        self.fail_on = fail_on or {}
        self.missing = missing
        self.wp_config = wp_config
        self.commands: List[Tuple[str, str]] = []
        self.remote_files: Dict[str, str] = {}
        self.downloads: List[Tuple[str, str, str]] = []
        self.uploads: List[Tuple[str, str, str]] = []
        self.secrets: List[str] = []
        self.closed = False

    def run(self, environment, command, timeout=None, check=True):
        self.commands.append((environment.name, command))

        if command.startswith("mysqldump"):
            target = _redirect_target(command, ">")
            # Written before the failure check so failed dumps leave a partial file
            if environment.is_remote:
                self.remote_files[target] = self.dump_output
            else:
                Path(target).write_text(self.dump_output)

        for fragment, output in self.fail_on.items():
            if fragment in command:
                if check:
                    raise CommandExecutionFailed(environment.label, command, output)
                return CommandResult(1, output)

        if any(command == f"command -v {tool}" for tool in self.missing):
            return CommandResult(1, "")
        if command.startswith("cat ") and command.endswith("wp-config.php"):
            return CommandResult(0, self.wp_config)
        if command.startswith("test -s "):
            exists = bool(self.remote_files.get(shlex.split(command)[2]))
            return CommandResult(0 if exists else 1, "")
        if command.startswith("rm -f "):
            self.remote_files.pop(shlex.split(command)[2], None)
        return CommandResult(0, "")

    def download(self, environment, remote_path, local_path):
        self.downloads.append((environment.name, remote_path, str(local_path)))
        Path(local_path).write_text(self.remote_files.get(remote_path, ""))

    def upload(self, environment, local_path, remote_path):
        self.uploads.append((environment.name, str(local_path), remote_path))
        self.remote_files[remote_path] = Path(local_path).read_text()

    def add_secret(self, secret):
        if secret:
            self.secrets.append(secret)

    def close(self):
        self.closed = True

    def commands_for(self, environment_name: str) -> List[str]:
        return [cmd for env, cmd in self.commands if env == environment_name]

    def index_of(self, fragment: str) -> int:
        for i, (_, cmd) in enumerate(self.commands):
            if fragment in cmd:
                return i
        return -1
