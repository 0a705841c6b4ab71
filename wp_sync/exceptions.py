"""
Exception hierarchy for wp_sync

Every failure of a sync run surfaces as one of these. None of them is
retried automatically: the operator fixes the cause and runs again.
"""

from typing import Any, Dict, Optional


class WPSyncError(Exception):
    """Base exception for all wp_sync errors."""
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        return self.message


# Configuration

class ConfigError(WPSyncError):
    """Raised when configuration is missing or malformed."""
    pass


class InvalidEnvironment(ConfigError):
    """Raised when a shorthand does not name a known environment."""
    def __init__(self, token: str):
        super().__init__(
            f"Invalid environment '{token}' (expected one of: prod, stage, dev)",
            {"token": token},
        )
        self.token = token


class InvalidDirectionFormat(ConfigError):
    """Raised when a direction is not of the form <source>_to_<target>."""
    def __init__(self, text: str):
        super().__init__(
            f"Invalid sync direction '{text}' (expected <source>_to_<target>, e.g. prod_to_dev)",
            {"direction": text},
        )
        self.text = text


class MissingConfigField(ConfigError):
    """Raised when an environment lacks a field an operation needs."""
    def __init__(self, environment: str, field: str):
        super().__init__(
            f"Missing required config field: {environment}.{field}",
            {"environment": environment, "field": field},
        )
        self.environment = environment
        self.field = field


class SameEnvironmentError(ConfigError):
    """Raised when source and target of a sync are the same environment."""
    def __init__(self, environment: str):
        super().__init__(
            f"Source and target are both '{environment}', nothing to sync",
            {"environment": environment},
        )
        self.environment = environment


# Safety gate

class SafetyGateError(WPSyncError):
    """Raised when a pre-flight check refuses to let the sync proceed."""
    pass


class RateLimitExceeded(SafetyGateError):
    """Raised when the previous sync started less than the minimum interval ago."""
    def __init__(self, remaining_seconds: int):
        minutes, seconds = divmod(remaining_seconds, 60)
        super().__init__(
            f"Rate limit exceeded: wait {minutes}m {seconds}s before syncing again",
            {"remaining_seconds": remaining_seconds},
        )
        self.remaining_seconds = remaining_seconds


class InsecurePermissions(SafetyGateError):
    """Raised when a sensitive file is readable or writable by others."""
    def __init__(self, path: str, mode: int):
        super().__init__(
            f"Insecure permissions on {path}: {oct(mode)} (expected owner-only, e.g. 0o600)",
            {"path": path, "mode": mode},
        )
        self.path = path
        self.mode = mode


class MissingDependency(SafetyGateError):
    """Raised when a required tool cannot be found."""
    def __init__(self, tool: str, environment: str = "local"):
        super().__init__(
            f"{tool} is not available on {environment}",
            {"tool": tool, "environment": environment},
        )
        self.tool = tool
        self.environment = environment


class UserCancelled(SafetyGateError):
    """Raised when the operator declines the production confirmation."""
    pass


# Transport

class TransportError(WPSyncError):
    """Raised when executing a command fails."""
    pass


class CommandExecutionFailed(TransportError):
    """Raised when a local or remote command fails, times out or cannot connect."""
    def __init__(self, transport: str, command: str, output: str):
        super().__init__(
            f"Command failed on {transport}: {command}\n{output}".rstrip(),
            {"transport": transport, "command": command, "output": output},
        )
        self.transport = transport
        self.command = command
        self.output = output


# Data integrity

class DataIntegrityError(WPSyncError):
    """Raised when an artifact cannot be produced or consumed."""
    pass


class BackupVerificationFailed(DataIntegrityError):
    pass


class ExportFailed(DataIntegrityError):
    pass


class ImportFailed(DataIntegrityError):
    pass


# URL rewrite

class RewriteError(WPSyncError):
    """Raised when rewriting URLs fails after the import already ran."""
    pass


class UrlRewriteFailed(RewriteError):
    def __init__(self, statement: str, reason: str):
        super().__init__(
            f"URL rewrite failed at '{statement}': {reason}",
            {"statement": statement, "reason": reason},
        )
        self.statement = statement
        self.reason = reason
