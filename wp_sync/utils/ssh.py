"""
Command execution on local and remote environments

Local commands run in a child process; remote commands run over SSH
(paramiko) with strict host-key checking and key-based authentication only.
Both report merged stdout/stderr and an exit code, and both raise
CommandExecutionFailed on failure.
"""

import os
import socket
import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import paramiko
from tqdm import tqdm

from wp_sync.exceptions import CommandExecutionFailed
from wp_sync.models import CommandResult, EnvironmentConfig
from wp_sync.utils.audit import get_audit_logger, redact, register_secret


class SSHClient:
    """
    SSH client bound to one remote environment
    """

    def __init__(self, environment: EnvironmentConfig, timeout: Optional[int] = None):
        """
        Initializes the SSH client

        Args:
            environment: Remote environment (ssh_host, ssh_user, ssh_port, ssh_key)
            timeout: Connection timeout in seconds
        """
        self.environment = environment
        self.timeout = timeout
        self.client: Optional[paramiko.SSHClient] = None

    def _connection_params(self) -> Dict[str, object]:
        env = self.environment
        params: Dict[str, object] = {
            "hostname": env.ssh_host,
            "port": int(env.ssh_port or 22),
            "username": env.ssh_user,
            "allow_agent": True,
            "look_for_keys": True,
        }

        # Fill the identity file from ~/.ssh/config when none is configured
        key_file = env.ssh_key
        user_config_file = os.path.expanduser("~/.ssh/config")
        if not key_file and os.path.exists(user_config_file):
            ssh_config = paramiko.SSHConfig()
            with open(user_config_file) as f:
                ssh_config.parse(f)
            host_config = ssh_config.lookup(env.ssh_host)
            params["hostname"] = host_config.get("hostname", env.ssh_host)
            identity = host_config.get("identityfile")
            if identity:
                key_file = identity[0]

        if key_file:
            params["key_filename"] = os.path.expanduser(key_file)
        if self.timeout:
            params["timeout"] = self.timeout
            params["banner_timeout"] = self.timeout
            params["auth_timeout"] = self.timeout
        return params

    def connect(self) -> None:
        """
        Establishes the SSH connection

        Raises:
            CommandExecutionFailed: If the host is unknown, unreachable or rejects the key
        """
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
        try:
            client.connect(**self._connection_params())
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise CommandExecutionFailed(
                self.environment.label, "ssh connect", f"{type(e).__name__}: {e}"
            ) from e
        self.client = client

    def disconnect(self) -> None:
        if self.client:
            self.client.close()
            self.client = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def execute(self, command: str, timeout: Optional[int] = None) -> CommandResult:
        """
        Executes a command on the remote server

        Args:
            command: Shell command to run remotely
            timeout: Seconds without output before giving up

        Returns:
            CommandResult: Exit code and merged output

        Raises:
            CommandExecutionFailed: On channel errors or timeout
        """
        if not self.client:
            self.connect()

        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise CommandExecutionFailed(self.environment.label, command, "SSH connection is closed")

        try:
            channel = transport.open_session(timeout=timeout)
            channel.set_combine_stderr(True)
            if timeout:
                channel.settimeout(timeout)
            channel.exec_command(command)
            output = channel.makefile("rb").read().decode("utf-8", errors="replace")
            exit_code = channel.recv_exit_status()
            channel.close()
        except socket.timeout as e:
            raise CommandExecutionFailed(
                self.environment.label, command, f"Timed out after {timeout}s"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            raise CommandExecutionFailed(
                self.environment.label, command, f"{type(e).__name__}: {e}"
            ) from e

        return CommandResult(exit_code, output)

    def open_tunnel(self, host: str, port: int, timeout: Optional[int] = None) -> paramiko.Channel:
        """
        Opens a direct-tcpip channel to host:port as seen from the SSH server

        The channel is socket-like and is handed to the database driver, so
        "localhost" means the remote machine, not this one.

        Raises:
            CommandExecutionFailed: If the server refuses the forward
        """
        if not self.client:
            self.connect()
        transport = self.client.get_transport()
        description = f"tunnel {host}:{port}"
        if transport is None or not transport.is_active():
            raise CommandExecutionFailed(self.environment.label, description, "SSH connection is closed")
        try:
            channel = transport.open_channel(
                "direct-tcpip", (host, int(port)), ("127.0.0.1", 0), timeout=timeout
            )
        except (paramiko.SSHException, OSError) as e:
            raise CommandExecutionFailed(
                self.environment.label, description, f"{type(e).__name__}: {e}"
            ) from e
        if timeout:
            channel.settimeout(timeout)
        return channel

    def _progress(self, description: str) -> Callable[[int, int], None]:
        bar = {"tqdm": None}

        def callback(transferred: int, total: int) -> None:
            if bar["tqdm"] is None:
                bar["tqdm"] = tqdm(total=total, unit="B", unit_scale=True, desc=description)
            bar["tqdm"].update(transferred - bar["tqdm"].n)
            if transferred >= total:
                bar["tqdm"].close()

        return callback

    def upload_file(self, local_path: Path, remote_path: str) -> None:
        """
        Uploads a file to the remote server over SFTP

        Raises:
            CommandExecutionFailed: If the transfer fails
        """
        if not self.client:
            self.connect()
        try:
            sftp = self.client.open_sftp()
            try:
                sftp.put(str(local_path), remote_path, callback=self._progress("Uploading"))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise CommandExecutionFailed(
                self.environment.label, f"sftp put {local_path} {remote_path}", str(e)
            ) from e

    def download_file(self, remote_path: str, local_path: Path) -> None:
        """
        Downloads a file from the remote server over SFTP

        Raises:
            CommandExecutionFailed: If the transfer fails
        """
        if not self.client:
            self.connect()
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            sftp = self.client.open_sftp()
            try:
                sftp.get(remote_path, str(local_path), callback=self._progress("Downloading"))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise CommandExecutionFailed(
                self.environment.label, f"sftp get {remote_path} {local_path}", str(e)
            ) from e


class CommandRunner:
    """
    Runs commands against an environment on its configured transport

    Remote connections are opened lazily, reused for the whole run and
    closed by close().
    """

    def __init__(
        self,
        timeout: Optional[int] = None,
        secrets: Iterable[str] = (),
        verbose: bool = False,
        client_factory: Callable[..., SSHClient] = SSHClient,
    ):
        self.timeout = timeout
        self.secrets: List[str] = [s for s in secrets if s]
        self.verbose = verbose
        self.client_factory = client_factory
        self._clients: Dict[str, SSHClient] = {}
        self.audit = get_audit_logger()

    def add_secret(self, secret: Optional[str]) -> None:
        if secret and secret not in self.secrets:
            self.secrets.append(secret)
        register_secret(secret)

    def _redact(self, text: str) -> str:
        return redact(text, self.secrets)

    def _client(self, environment: EnvironmentConfig) -> SSHClient:
        client = self._clients.get(environment.name)
        if client is None:
            client = self.client_factory(environment, timeout=self.timeout)
            client.connect()
            self._clients[environment.name] = client
        return client

    def run(
        self,
        environment: EnvironmentConfig,
        command: str,
        timeout: Optional[int] = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Executes a command on the environment's transport

        Args:
            environment: Where to run the command
            command: Shell command
            timeout: Overrides the runner's default timeout
            check: If True, a non-zero exit raises CommandExecutionFailed

        Returns:
            CommandResult: Exit code and merged output
        """
        timeout = timeout if timeout is not None else self.timeout
        safe_command = self._redact(command)
        self.audit.info(f"[{environment.name}] exec: {safe_command}")
        if self.verbose:
            print(f"🔄 Executing on {environment.label}: {safe_command}")

        try:
            if environment.is_remote:
                result = self._client(environment).execute(command, timeout=timeout or None)
            else:
                result = self._run_local(environment, command, timeout)
        except CommandExecutionFailed as e:
            output = self._redact(e.output)
            self.audit.info(f"[{environment.name}] failed: {output}")
            raise CommandExecutionFailed(e.transport, safe_command, output) from e

        self.audit.info(f"[{environment.name}] exit {result.exit_code}")
        if check and not result.ok:
            output = self._redact(result.output)
            self.audit.info(f"[{environment.name}] output: {output}")
            raise CommandExecutionFailed(environment.label, safe_command, output)
        return result

    def _run_local(
        self, environment: EnvironmentConfig, command: str, timeout: Optional[int]
    ) -> CommandResult:
        try:
            process = subprocess.run(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout or None,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandExecutionFailed(
                environment.label, command, f"Timed out after {timeout}s"
            ) from e
        except OSError as e:
            raise CommandExecutionFailed(environment.label, command, str(e)) from e
        return CommandResult(process.returncode, process.stdout or "")

    def open_tunnel(self, environment: EnvironmentConfig, host: str, port: int):
        """Forwards a connection to host:port through the environment's SSH session."""
        self.audit.info(f"[{environment.name}] tunnel to {host}:{port}")
        return self._client(environment).open_tunnel(host, port, timeout=self.timeout)

    def download(self, environment: EnvironmentConfig, remote_path: str, local_path: Path) -> None:
        self.audit.info(f"[{environment.name}] download {remote_path} -> {local_path}")
        print(f"⬇️ Downloading {remote_path} from {environment.name}...")
        self._client(environment).download_file(remote_path, local_path)

    def upload(self, environment: EnvironmentConfig, local_path: Path, remote_path: str) -> None:
        self.audit.info(f"[{environment.name}] upload {local_path} -> {remote_path}")
        print(f"⬆️ Uploading {local_path} to {environment.name}...")
        self._client(environment).upload_file(local_path, remote_path)

    def close(self) -> None:
        for client in self._clients.values():
            client.disconnect()
        self._clients.clear()
