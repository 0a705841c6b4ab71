"""
Pre-flight safety checks

Each check raises its own SafetyGateError subclass. SafetyGate runs them
in a fixed order before anything destructive happens.
"""

import math
import shlex
import shutil
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from wp_sync.exceptions import (
    InsecurePermissions,
    MissingDependency,
    RateLimitExceeded,
    UserCancelled,
)
from wp_sync.models import PRODUCTION, EnvironmentConfig, RunState, SyncDirection
from wp_sync.utils.audit import get_audit_logger
from wp_sync.utils.filesystem import is_owner_only, permission_bits, write_owner_only

AFFIRMATIVE = "y"


class RateLimiter:
    """
    Enforces a minimum interval between the starts of two sync runs

    The marker is a plain file holding a Unix timestamp. Check and record
    are two separate steps, so two processes started in the same instant
    can both pass; this is a guard against accidental double runs, not a lock.
    """

    def __init__(
        self,
        marker_path: Path,
        min_interval_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.marker_path = Path(marker_path)
        self.min_interval_seconds = min_interval_seconds
        self.clock = clock

    def last_sync(self) -> Optional[float]:
        if not self.marker_path.exists():
            return None
        try:
            return float(self.marker_path.read_text().strip())
        except ValueError:
            # A corrupt marker must not block syncing forever
            get_audit_logger().info(f"Ignoring unreadable sync marker {self.marker_path}")
            return None

    def remaining(self) -> int:
        """Seconds left before the next sync may start (0 when allowed)."""
        last = self.last_sync()
        if last is None:
            return 0
        elapsed = self.clock() - last
        if elapsed >= self.min_interval_seconds:
            return 0
        return int(math.ceil(self.min_interval_seconds - elapsed))

    def check(self) -> None:
        """
        Raises:
            RateLimitExceeded: If the previous run started too recently
        """
        remaining = self.remaining()
        if remaining > 0:
            raise RateLimitExceeded(remaining)

    def record(self) -> None:
        """Overwrites the marker with the current time, owner-only."""
        write_owner_only(self.marker_path, f"{int(self.clock())}\n")


class PermissionAuditor:
    """
    Verifies sensitive local files are not accessible to group or others
    """

    def __init__(self, paths: Iterable[Optional[str]]):
        self.paths: List[Path] = [Path(p) for p in paths if p]

    def check(self) -> None:
        """
        Raises:
            InsecurePermissions: For the first file broader than owner-only
        """
        for path in self.paths:
            if path.exists() and not is_owner_only(path):
                raise InsecurePermissions(str(path), permission_bits(path))


class ToolAvailabilityProbe:
    """
    Confirms the dump/restore tools exist where each environment runs them
    """

    def __init__(self, runner, tools: Iterable[str] = ("mysqldump", "mysql")):
        self.runner = runner
        self.tools = tuple(tools)

    def check_local(self) -> None:
        for tool in self.tools:
            if shutil.which(tool) is None:
                raise MissingDependency(tool, "local")

    def check_environment(self, environment: EnvironmentConfig, run_state: RunState) -> None:
        """
        Probes an environment once per run

        Remote environments are probed over SSH (tools on PATH and the
        install path present); the result is remembered in run_state.

        Raises:
            MissingDependency: If a tool or the install path is missing
        """
        if environment.name in run_state.validated_environments:
            return

        if not environment.is_remote:
            self.check_local()
        else:
            print(f"🔄 Checking {environment.label}...")
            for tool in self.tools:
                result = self.runner.run(
                    environment, f"command -v {shlex.quote(tool)}", check=False
                )
                if not result.ok:
                    raise MissingDependency(tool, environment.name)

            result = self.runner.run(
                environment, f"test -d {shlex.quote(environment.path)}", check=False
            )
            if not result.ok:
                raise MissingDependency(f"remote path {environment.path}", environment.name)

        run_state.validated_environments.add(environment.name)
        print(f"✅ {environment.name}: tools available")


class StdinConfirmation:
    """Asks on the controlling terminal."""

    def __init__(self, input_func: Callable[[str], str] = input):
        self.input_func = input_func

    def confirm(self, prompt: str) -> bool:
        try:
            answer = self.input_func(prompt)
        except EOFError:
            return False
        return answer.strip().lower() == AFFIRMATIVE


class AutoConfirmation:
    """Non-interactive confirmation for automation (--yes)."""

    def confirm(self, prompt: str) -> bool:
        print(f"{prompt}{AFFIRMATIVE} (--yes)")
        return True


class ProductionConfirmation:
    """
    Blocks on an explicit yes before production is overwritten
    """

    PROMPT = (
        "\n⚠️ WARNING: You are about to sync to production.\n"
        "   This will overwrite the production database.\n"
        "   Are you sure you want to continue? (y/N): "
    )

    def __init__(self, provider):
        self.provider = provider

    def check(self, direction: SyncDirection) -> None:
        """
        Raises:
            UserCancelled: If the target is production and the answer is not 'y'
        """
        if direction.target != PRODUCTION:
            return
        if not self.provider.confirm(self.PROMPT):
            raise UserCancelled("Sync to production cancelled by user")
        print("⚡ Confirmation received. Proceeding with the operation...")


class SafetyGate:
    """
    Runs the pre-flight checks in order

    preflight(): permissions -> rate limit check -> marker -> tools.
    authorize(): production confirmation.
    The marker is written as soon as the rate limit passes, so a second
    run started while this one probes hosts or waits for confirmation is
    refused. Dry runs skip the marker and stop after preflight().
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        permission_auditor: PermissionAuditor,
        tool_probe: ToolAvailabilityProbe,
        confirmation: ProductionConfirmation,
    ):
        self.rate_limiter = rate_limiter
        self.permission_auditor = permission_auditor
        self.tool_probe = tool_probe
        self.confirmation = confirmation
        self.audit = get_audit_logger()

    def preflight(
        self,
        environments: Iterable[EnvironmentConfig],
        run_state: RunState,
        record: bool = True,
    ) -> None:
        """
        Non-interactive checks

        Args:
            environments: Source and target of the run
            run_state: Per-run cache of probed environments
            record: Write the rate-limit marker once the check passes (False for dry runs)
        """
        print("🔍 Running safety checks...")
        self.permission_auditor.check()
        self.rate_limiter.check()
        if record:
            self.rate_limiter.record()
        for environment in environments:
            self.tool_probe.check_environment(environment, run_state)

    def authorize(self, direction: SyncDirection) -> None:
        """Asks for confirmation when the target is production."""
        self.confirmation.check(direction)
        self.audit.info(f"Safety checks passed for {direction}")
