"""
Environment resolution and configuration validation
"""

import re
import shlex
from typing import Dict, Iterable, Optional, Tuple

from wp_sync.exceptions import (
    InvalidDirectionFormat,
    InvalidEnvironment,
    MissingConfigField,
)
from wp_sync.models import (
    DEVELOPMENT,
    PRODUCTION,
    STAGING,
    EnvironmentConfig,
    RunState,
    SyncDirection,
)
from wp_sync.utils.filesystem import join_remote

SHORTHANDS: Dict[str, str] = {
    "prod": PRODUCTION,
    "stage": STAGING,
    "dev": DEVELOPMENT,
}

DIRECTION_SEPARATOR = "_to_"
DEFAULT_DIRECTION = "prod_to_dev"

ALWAYS_REQUIRED = ("transport", "site_url")
REMOTE_REQUIRED = ("ssh_host", "ssh_user", "path")
DATABASE_FIELDS = ("db_host", "db_name", "db_user", "db_pass", "table_prefix")


def _is_missing(environment: EnvironmentConfig, field: str) -> bool:
    value = getattr(environment, field, None)
    # An empty password is a valid (if unwise) local setup
    if field == "db_pass":
        return value is None
    return value is None or (isinstance(value, str) and not value.strip())


class EnvironmentResolver:
    """
    Maps direction tokens to environments and checks their configuration
    """

    @staticmethod
    def resolve(token: str) -> str:
        """
        Resolves a shorthand (prod, stage, dev) to its environment name

        Raises:
            InvalidEnvironment: If the token is not a known shorthand
        """
        try:
            return SHORTHANDS[token]
        except KeyError:
            raise InvalidEnvironment(token) from None

    @classmethod
    def parse_direction(cls, text: str) -> SyncDirection:
        """
        Parses '<source>_to_<target>' into a SyncDirection

        Source and target may be the same; the orchestrator decides what to
        do with that.

        Raises:
            InvalidDirectionFormat: Unless the text splits into exactly two parts
            InvalidEnvironment: If either part is not a known shorthand
        """
        parts = (text or "").split(DIRECTION_SEPARATOR)
        if len(parts) != 2:
            raise InvalidDirectionFormat(text)
        return SyncDirection(source=cls.resolve(parts[0]), target=cls.resolve(parts[1]))

    @staticmethod
    def required_fields(environment: EnvironmentConfig) -> Tuple[str, ...]:
        fields = ALWAYS_REQUIRED
        if environment.is_remote:
            fields += REMOTE_REQUIRED
        if environment.auto_discover:
            if "path" not in fields:
                fields += ("path",)
        else:
            fields += DATABASE_FIELDS
        return fields

    @classmethod
    def validate_config(cls, environments: Dict[str, EnvironmentConfig]) -> None:
        """
        Checks every configured environment before any transport is used

        Database fields are skipped for environments that discover their
        credentials; require() checks them again once discovery ran.

        Raises:
            MissingConfigField: Naming the first environment and field missing
        """
        for name, environment in environments.items():
            for field in cls.required_fields(environment):
                if _is_missing(environment, field):
                    raise MissingConfigField(name, field)

    @staticmethod
    def require(environment: EnvironmentConfig, fields: Iterable[str]) -> None:
        """
        Per-operation check of the fields an operation is about to use

        Raises:
            MissingConfigField: For the first missing field
        """
        for field in fields:
            if _is_missing(environment, field):
                raise MissingConfigField(environment.name, field)


_DEFINE_PATTERN = r"define\(\s*['\"]{name}['\"]\s*,\s*['\"](.*?)['\"]\s*\)"
_PREFIX_PATTERN = re.compile(r"\$table_prefix\s*=\s*['\"](.*?)['\"]\s*;")

_WP_CONFIG_CONSTANTS = {
    "DB_NAME": "db_name",
    "DB_USER": "db_user",
    "DB_PASSWORD": "db_pass",
    "DB_HOST": "db_host",
}


class WpConfigCredentialResolver:
    """
    Fills database credentials from <path>/wp-config.php

    Reads the file over the environment's own transport, so it works the
    same for local and remote installs. Only fields not already set in the
    configuration are filled in.
    """

    def __init__(self, runner):
        self.runner = runner

    def resolve(self, environment: EnvironmentConfig, run_state: Optional[RunState] = None) -> bool:
        """
        Populates the environment's database fields in place

        Returns:
            bool: True if discovery ran, False if it was skipped
        """
        if not environment.auto_discover:
            return False
        if run_state is not None and environment.name in run_state.discovered_environments:
            return False

        EnvironmentResolver.require(environment, ("path",))
        wp_config = join_remote(environment.path, "wp-config.php")
        print(f"🔍 Reading database credentials from {environment.name}:{wp_config}")
        result = self.runner.run(environment, f"cat {shlex.quote(wp_config)}")
        values = parse_wp_config(result.output)

        for constant, field in _WP_CONFIG_CONSTANTS.items():
            if constant in values and _is_missing(environment, field):
                value = values[constant]
                # DB_HOST may carry a port: localhost:3307
                if field == "db_host" and ":" in value:
                    host, _, port = value.partition(":")
                    if port.isdigit():
                        environment.db_port = int(port)
                        value = host
                setattr(environment, field, value)
        if "table_prefix" in values and _is_missing(environment, "table_prefix"):
            environment.table_prefix = values["table_prefix"]

        if environment.db_pass:
            self.runner.add_secret(environment.db_pass)

        if run_state is not None:
            run_state.discovered_environments.add(environment.name)

        EnvironmentResolver.require(environment, DATABASE_FIELDS)
        return True


def parse_wp_config(text: str) -> Dict[str, str]:
    """Extracts the DB_* constants and the table prefix from wp-config.php source."""
    values = {}
    for constant in _WP_CONFIG_CONSTANTS:
        match = re.search(_DEFINE_PATTERN.format(name=constant), text)
        if match:
            values[constant] = match.group(1)
    match = _PREFIX_PATTERN.search(text)
    if match:
        values["table_prefix"] = match.group(1)
    return values
