"""
Site URL rewrite after an import

Runs directly against the target database (not through a shell): the
imported content still points at the source site's URL and is rewritten
to the target's with parameterized statements. For remote targets the
connection is forwarded through the environment's SSH session, so db_host
is resolved on the remote machine.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

import pymysql

from wp_sync.environments import EnvironmentResolver
from wp_sync.exceptions import TransportError, UrlRewriteFailed
from wp_sync.models import EnvironmentConfig
from wp_sync.utils.audit import get_audit_logger
from wp_sync.utils.serialized import SerializedFormatError, looks_serialized, replace_serialized

_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")

# (name, query, binds LIKE pattern)
REWRITE_STATEMENTS: List[Tuple[str, str, bool]] = [
    (
        "site url options",
        "UPDATE `{prefix}options` SET option_value = REPLACE(option_value, %s, %s) "
        "WHERE option_name = 'home' OR option_name = 'siteurl'",
        False,
    ),
    (
        "post content",
        "UPDATE `{prefix}posts` SET post_content = REPLACE(post_content, %s, %s)",
        False,
    ),
    (
        "post meta",
        "UPDATE `{prefix}postmeta` SET meta_value = REPLACE(meta_value, %s, %s) "
        "WHERE meta_value LIKE %s",
        True,
    ),
    (
        "option values",
        "UPDATE `{prefix}options` SET option_value = REPLACE(option_value, %s, %s) "
        "WHERE option_value LIKE %s AND option_name NOT IN ('home', 'siteurl')",
        True,
    ),
]

# (name, plain statement it shields, table suffix, primary key, value column)
SERIALIZED_COLUMNS: List[Tuple[str, str, str, str, str]] = [
    ("serialized post meta", "post meta", "postmeta", "meta_id", "meta_value"),
    ("serialized option values", "option values", "options", "option_id", "option_value"),
]


def like_pattern(url: str) -> str:
    return f"%{url}%"


class UrlRewriter:
    """
    Rewrites the source site URL to the target site URL in the target database

    With ``serialized_aware`` set, serialized meta and option values are
    rewritten first with their string lengths fixed; the plain REPLACE()
    statements then cover everything else and skip the rows already
    handled, which would otherwise be replaced twice when the new URL
    contains the old one. Without it the behavior is a
    straight substring replacement, which corrupts serialized values whose
    URL length changes.
    """

    def __init__(
        self,
        serialized_aware: bool = True,
        runner=None,
        connect: Callable[..., object] = pymysql.connect,
        timeout: Optional[int] = None,
        verbose: bool = False,
    ):
        self.serialized_aware = serialized_aware
        self.runner = runner
        self.connect = connect
        self.timeout = timeout
        self.verbose = verbose
        self.audit = get_audit_logger()

    def _open(self, environment: EnvironmentConfig):
        params = {
            "host": environment.db_host,
            "port": int(environment.db_port),
            "user": environment.db_user,
            "password": environment.db_pass or "",
            "database": environment.db_name,
            "charset": "utf8mb4",
            "autocommit": False,
        }
        if self.timeout:
            params["connect_timeout"] = self.timeout
        if environment.is_remote:
            return self._open_tunneled(environment, params)
        try:
            return self.connect(**params)
        except pymysql.MySQLError as e:
            raise UrlRewriteFailed("connect", f"{environment.db_host}/{environment.db_name}: {e}") from e

    def _open_tunneled(self, environment: EnvironmentConfig, params: Dict[str, object]):
        if self.runner is None:
            raise UrlRewriteFailed("connect", f"{environment.label} needs an SSH transport")
        where = f"{environment.ssh_host} -> {environment.db_host}:{environment.db_port}/{environment.db_name}"
        try:
            channel = self.runner.open_tunnel(environment, environment.db_host, int(environment.db_port))
        except TransportError as e:
            raise UrlRewriteFailed("connect", f"{where}: {e}") from e

        params["defer_connect"] = True
        try:
            connection = self.connect(**params)
            connection.connect(sock=channel)
        except pymysql.MySQLError as e:
            channel.close()
            raise UrlRewriteFailed("connect", f"{where}: {e}") from e
        return connection

    def rewrite(self, target: EnvironmentConfig, source: EnvironmentConfig) -> Dict[str, int]:
        """
        Replaces source.site_url with target.site_url in the target database

        Args:
            target: Environment whose database was just imported
            source: Environment the data came from

        Returns:
            Dict[str, int]: Rows changed per statement

        Raises:
            UrlRewriteFailed: Naming the statement that failed
        """
        EnvironmentResolver.require(target, ("db_host", "db_name", "db_user", "db_pass", "table_prefix", "site_url"))
        EnvironmentResolver.require(source, ("site_url",))

        old_url = source.site_url
        new_url = target.site_url
        prefix = target.table_prefix
        if not _PREFIX_PATTERN.match(prefix):
            raise UrlRewriteFailed("table prefix", f"invalid table prefix '{prefix}'")

        print(f"🔄 Replacing URLs in {target.name}: {old_url} -> {new_url}")
        if old_url == new_url:
            print("ℹ️ Source and target URLs are identical, nothing to replace")
            return {}

        changed: Dict[str, int] = {}
        handled: Dict[str, Tuple[str, List[int]]] = {}
        connection = self._open(target)
        try:
            if self.serialized_aware:
                for name, plain_name, table, key, column in SERIALIZED_COLUMNS:
                    changed[name], row_ids = self._rewrite_serialized(
                        connection, name, f"{prefix}{table}", key, column, old_url, new_url
                    )
                    handled[plain_name] = (key, row_ids)

            for name, query, uses_like in REWRITE_STATEMENTS:
                query = query.format(prefix=prefix)
                params: List[object] = [old_url, new_url]
                if uses_like:
                    params.append(like_pattern(old_url))
                key, row_ids = handled.get(name, ("", []))
                if row_ids:
                    query += f" AND `{key}` NOT IN ({', '.join(['%s'] * len(row_ids))})"
                    params.extend(row_ids)
                changed[name] = self._execute(connection, name, query, params)

            try:
                connection.commit()
            except pymysql.MySQLError as e:
                raise UrlRewriteFailed("commit", str(e)) from e
        except UrlRewriteFailed:
            self._rollback(connection)
            raise
        finally:
            connection.close()

        for name, count in changed.items():
            self.audit.info(f"URL rewrite '{name}' on {target.name}: {count} rows")
            if self.verbose:
                print(f"   - {name}: {count} rows")
        print("✅ URLs replaced")
        return changed

    def _execute(self, connection, name: str, query: str, params: List[object]) -> int:
        try:
            with connection.cursor() as cursor:
                return cursor.execute(query, params)
        except pymysql.MySQLError as e:
            raise UrlRewriteFailed(name, str(e)) from e

    def _rewrite_serialized(
        self, connection, name: str, table: str, key: str, column: str, old_url: str, new_url: str
    ) -> Tuple[int, List[int]]:
        """Returns the number of rows changed and the ids of every row parsed as serialized."""
        select = f"SELECT `{key}`, `{column}` FROM `{table}` WHERE `{column}` LIKE %s"
        update = f"UPDATE `{table}` SET `{column}` = %s WHERE `{key}` = %s"
        updated = 0
        row_ids: List[int] = []
        try:
            with connection.cursor() as cursor:
                cursor.execute(select, [like_pattern(old_url)])
                rows = cursor.fetchall()
                for row_id, value in rows:
                    if not isinstance(value, str) or not looks_serialized(value):
                        continue
                    try:
                        rewritten = replace_serialized(value, old_url, new_url)
                    except SerializedFormatError as e:
                        # Left for the plain REPLACE() pass
                        self.audit.info(f"Skipping malformed serialized value {table}.{row_id}: {e}")
                        continue
                    row_ids.append(row_id)
                    if rewritten != value:
                        cursor.execute(update, [rewritten, row_id])
                        updated += 1
        except pymysql.MySQLError as e:
            raise UrlRewriteFailed(name, str(e)) from e
        return updated, row_ids

    def _rollback(self, connection) -> None:
        try:
            connection.rollback()
        except pymysql.MySQLError as e:
            self.audit.info(f"Rollback after URL rewrite failure failed: {e}")
