"""
Data model shared by the sync components
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

PRODUCTION = "production"
STAGING = "staging"
DEVELOPMENT = "development"

ENVIRONMENTS = (PRODUCTION, STAGING, DEVELOPMENT)

TRANSPORT_LOCAL = "local"
TRANSPORT_REMOTE = "remote"


@dataclass
class EnvironmentConfig:
    """
    One deployment tier.

    Database fields may be empty at load time when ``auto_discover`` is set;
    the credential resolver fills them in place before they are used.
    """
    name: str
    transport: Optional[str] = None
    ssh_host: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_port: int = 22
    ssh_key: Optional[str] = None
    db_host: Optional[str] = None
    db_port: int = 3306
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_pass: Optional[str] = None
    site_url: Optional[str] = None
    table_prefix: Optional[str] = None
    path: Optional[str] = None
    auto_discover: bool = False

    @property
    def is_remote(self) -> bool:
        return self.transport == TRANSPORT_REMOTE

    @property
    def label(self) -> str:
        """Human readable transport description, used in messages and errors."""
        if self.is_remote:
            return f"{self.name} ({self.ssh_user}@{self.ssh_host}:{self.ssh_port})"
        return f"{self.name} (local)"


@dataclass
class SyncSettings:
    """Run-wide settings loaded once at process start."""
    environments: Dict[str, EnvironmentConfig]
    min_interval_seconds: int = 300
    marker_file: str = ".wp_sync_last"
    log_file: str = "wp_sync.log"
    work_dir: str = "."
    timeout: Optional[int] = 600
    required_tools: Tuple[str, ...] = ("mysqldump", "mysql")
    serialized_aware: bool = True
    config_file: Optional[str] = None

    def secrets(self) -> List[str]:
        """Every configured password, for log redaction."""
        return [env.db_pass for env in self.environments.values() if env.db_pass]


@dataclass(frozen=True)
class SyncDirection:
    source: str
    target: str

    def __str__(self):
        return f"{self.source} -> {self.target}"


@dataclass
class CommandResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SyncState(Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    GATING = "gating"
    BACKING_UP = "backing_up"
    EXPORTING = "exporting"
    IMPORTING = "importing"
    REWRITING = "rewriting"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = (SyncState.DONE, SyncState.FAILED)


@dataclass
class RunState:
    """
    Ephemeral state of one sync invocation.

    ``validated_environments`` and ``discovered_environments`` memoize the
    remote probing and credential discovery so each happens at most once
    per environment per run.
    """
    direction: Optional[SyncDirection] = None
    timestamp: float = field(default_factory=time.time)
    state: SyncState = SyncState.IDLE
    validated_environments: Set[str] = field(default_factory=set)
    discovered_environments: Set[str] = field(default_factory=set)
    backup_path: Optional[str] = None
    export_path: Optional[str] = None
    local_artifacts: List[str] = field(default_factory=list)
    remote_artifacts: List[Tuple[str, str]] = field(default_factory=list)
    history: List[SyncState] = field(default_factory=list)

    def transition(self, state: SyncState) -> None:
        self.history.append(state)
        self.state = state

    def track_local(self, path: str) -> None:
        if path not in self.local_artifacts:
            self.local_artifacts.append(path)

    def track_remote(self, environment: str, path: str) -> None:
        entry = (environment, path)
        if entry not in self.remote_artifacts:
            self.remote_artifacts.append(entry)

    def summary(self) -> Dict[str, Any]:
        return {
            "direction": str(self.direction) if self.direction else None,
            "state": self.state.value,
            "backup": self.backup_path,
            "export": self.export_path,
        }
