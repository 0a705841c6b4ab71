"""
Database synchronization between environments

The orchestrator runs one sync as a fixed sequence of stages:

    resolve -> safety gate -> backup target -> export source
            -> import into target -> rewrite URLs -> cleanup

Every stage needs the previous one to have succeeded. Any failure moves
the run to cleanup and then re-raises the original error; a failing
cleanup is logged and never replaces that error. Nothing is retried and
nothing already done is undone: after a failed import or URL rewrite the
pre-sync backup is the way back.
"""

import shlex
import time
from pathlib import Path
from typing import Callable, List, Optional

from wp_sync.commands.backup import BackupManager
from wp_sync.commands.database import DatabaseTransferPipeline, excluded_tables
from wp_sync.commands.urls import UrlRewriter
from wp_sync.config_yaml import load_settings
from wp_sync.environments import (
    DEFAULT_DIRECTION,
    EnvironmentResolver,
    WpConfigCredentialResolver,
)
from wp_sync.exceptions import ConfigError, SameEnvironmentError, WPSyncError
from wp_sync.models import (
    TERMINAL_STATES,
    EnvironmentConfig,
    RunState,
    SyncSettings,
    SyncState,
)
from wp_sync.safety import (
    AutoConfirmation,
    PermissionAuditor,
    ProductionConfirmation,
    RateLimiter,
    SafetyGate,
    StdinConfirmation,
    ToolAvailabilityProbe,
)
from wp_sync.utils.audit import get_audit_logger, setup_audit_log
from wp_sync.utils.filesystem import find_stale_artifacts
from wp_sync.utils.ssh import CommandRunner


class SyncOrchestrator:
    """
    Runs a single database sync

    An instance is single-use: each call to sync() needs a fresh
    orchestrator (and therefore a fresh RunState).
    """

    def __init__(
        self,
        settings: SyncSettings,
        runner: Optional[CommandRunner] = None,
        confirmation=None,
        rewriter: Optional[UrlRewriter] = None,
        credential_resolver=None,
        clock: Callable[[], float] = time.time,
        dry_run: bool = False,
        verbose: bool = False,
    ):
        self.settings = settings
        self.dry_run = dry_run
        self.verbose = verbose
        self.audit = get_audit_logger()
        self.run_state = RunState(timestamp=clock())

        self.runner = runner or CommandRunner(
            timeout=settings.timeout, secrets=settings.secrets(), verbose=verbose
        )
        self.work_dir = Path(settings.work_dir)

        self.gate = SafetyGate(
            rate_limiter=RateLimiter(
                Path(settings.marker_file), settings.min_interval_seconds, clock=clock
            ),
            permission_auditor=PermissionAuditor(self._sensitive_files()),
            tool_probe=ToolAvailabilityProbe(self.runner, settings.required_tools),
            confirmation=ProductionConfirmation(confirmation or StdinConfirmation()),
        )
        self.credential_resolver = credential_resolver or WpConfigCredentialResolver(self.runner)
        self.backup_manager = BackupManager(self.runner, self.work_dir, self.run_state)
        self.pipeline = DatabaseTransferPipeline(
            self.runner, self.work_dir, self.run_state, verbose=verbose
        )
        self.rewriter = rewriter or UrlRewriter(
            serialized_aware=settings.serialized_aware,
            runner=self.runner,
            timeout=settings.timeout,
            verbose=verbose,
        )

    def _sensitive_files(self) -> List[str]:
        paths = [self.settings.config_file, self.settings.marker_file, self.settings.log_file]
        if self.settings.config_file:
            paths.append(str(Path(self.settings.config_file).parent / ".env"))
        return [p for p in paths if p]

    @property
    def state(self) -> SyncState:
        return self.run_state.state

    def _enter(self, state: SyncState) -> None:
        self.run_state.transition(state)
        self.audit.info(f"Stage: {state.value}")

    def _environment(self, name: str) -> EnvironmentConfig:
        environment = self.settings.environments.get(name)
        if environment is None:
            raise ConfigError(f"Environment '{name}' is not configured", {"environment": name})
        return environment

    def sync(self, direction_text: str = DEFAULT_DIRECTION) -> RunState:
        """
        Synchronizes the database in the given direction

        Args:
            direction_text: '<source>_to_<target>' with prod, stage or dev on each side

        Returns:
            RunState: The finished run (state DONE)

        Raises:
            WPSyncError: Any failure, after cleanup ran
            RuntimeError: If this orchestrator was already used
        """
        if self.run_state.state != SyncState.IDLE:
            raise RuntimeError("SyncOrchestrator instances are single-use; create a new one")

        self.audit.info(f"Starting sync: {direction_text}{' (dry run)' if self.dry_run else ''}")
        try:
            self._run(direction_text)
        except Exception as e:
            failed_at = self.run_state.state
            self.audit.info(
                f"Error during sync at stage '{failed_at.value}': {type(e).__name__}: {e}"
                f" | context: {getattr(e, 'context', {})} | run: {self.run_state.summary()}"
            )
            print(f"❌ Sync failed during {failed_at.value}: {e}")
            self._enter(SyncState.CLEANING_UP)
            self.cleanup()
            self._enter(SyncState.FAILED)
            raise
        finally:
            self.runner.close()

        return self.run_state

    def _run(self, direction_text: str) -> None:
        state = self.run_state

        self._enter(SyncState.RESOLVING)
        direction = EnvironmentResolver.parse_direction(direction_text)
        state.direction = direction
        if direction.source == direction.target:
            raise SameEnvironmentError(direction.source)
        EnvironmentResolver.validate_config(self.settings.environments)
        source = self._environment(direction.source)
        target = self._environment(direction.target)
        print(f"🔄 Synchronizing database: {source.label} -> {target.label}")

        self._enter(SyncState.GATING)
        self.gate.preflight([source, target], state, record=not self.dry_run)
        for environment in (source, target):
            self.credential_resolver.resolve(environment, state)

        if self.dry_run:
            self._print_plan(source, target)
            self._enter(SyncState.DONE)
            return

        self.gate.authorize(direction)

        self._enter(SyncState.BACKING_UP)
        self.backup_manager.backup(target)

        self._enter(SyncState.EXPORTING)
        artifact = self.pipeline.export(source)

        self._enter(SyncState.IMPORTING)
        self.pipeline.import_(target, artifact)

        self._enter(SyncState.REWRITING)
        self.rewriter.rewrite(target, source)

        self._enter(SyncState.CLEANING_UP)
        self.cleanup()

        self._enter(SyncState.DONE)
        self.audit.info("Sync completed successfully")
        print("✅ Sync completed successfully")
        if state.backup_path:
            print(f"📂 Backup of {target.name} kept at: {state.backup_path}")

    def _print_plan(self, source: EnvironmentConfig, target: EnvironmentConfig) -> None:
        print("🔄 Dry run mode: No real changes will be made")
        if target.name == "production":
            print("   - Confirmation would be required before overwriting production")
        print(f"   - {target.name} database '{target.db_name}' would be backed up")
        print(
            f"   - {source.name} database '{source.db_name}' would be exported"
            f" (excluding {', '.join(excluded_tables(source))})"
        )
        print(f"   - Imported into {target.name} database '{target.db_name}'")
        print(f"   - URLs would be replaced: {source.site_url} -> {target.site_url}")

    def cleanup(self) -> None:
        """
        Removes temporary artifacts of this run and stale ones of earlier runs

        Best effort: failures are logged and reported, never raised.
        Backups are not touched. A file of another run counts as stale once
        it is older than the rate-limit interval; like the marker itself this
        is not a lock, and a run still writing a dump that old in the same
        work_dir loses it.
        """
        state = self.run_state
        local_paths = list(state.local_artifacts)
        cutoff = state.timestamp - self.settings.min_interval_seconds
        for stale in find_stale_artifacts(self.work_dir, older_than=cutoff):
            if str(stale) not in local_paths:
                local_paths.append(str(stale))

        for path in local_paths:
            try:
                Path(path).unlink()
                self.audit.info(f"Removed temporary file {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                self.audit.info(f"Cleanup failed for {path}: {e}")
                print(f"⚠️ Could not remove temporary file {path}: {e}")
        state.local_artifacts.clear()

        for environment_name, remote_path in list(state.remote_artifacts):
            environment = self.settings.environments.get(environment_name)
            if environment is None:
                continue
            try:
                self.runner.run(environment, f"rm -f {shlex.quote(remote_path)}")
                self.audit.info(f"Removed temporary file {environment_name}:{remote_path}")
            except WPSyncError as e:
                self.audit.info(f"Cleanup failed for {environment_name}:{remote_path}: {e}")
                print(f"⚠️ Could not remove {environment_name}:{remote_path}: {e}")
        state.remote_artifacts.clear()

    @property
    def finished(self) -> bool:
        return self.run_state.state in TERMINAL_STATES


def sync_database(
    direction: str = DEFAULT_DIRECTION,
    config_file: Optional[str] = None,
    assume_yes: bool = False,
    dry_run: bool = False,
    timeout: Optional[int] = None,
    verbose: bool = False,
) -> RunState:
    """
    Loads the configuration and runs one sync

    Args:
        direction: '<source>_to_<target>' token, e.g. prod_to_dev
        config_file: YAML configuration file (defaults to ./wp-sync.yaml)
        assume_yes: Skip the interactive production confirmation
        dry_run: Only validate and show what would be done
        timeout: Per-step timeout in seconds, overriding the configuration
        verbose: If True, displays detailed messages

    Returns:
        RunState: The finished run
    """
    settings = load_settings(config_file, verbose=verbose)
    if timeout is not None:
        settings.timeout = timeout or None
    setup_audit_log(settings.log_file, settings.secrets())

    confirmation = AutoConfirmation() if assume_yes else StdinConfirmation()
    orchestrator = SyncOrchestrator(
        settings, confirmation=confirmation, dry_run=dry_run, verbose=verbose
    )
    return orchestrator.sync(direction)
