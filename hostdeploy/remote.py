"""Remote operations.

Run commands and write files on the target host via pyinfra over SSH,
and copy directory trees with rsync (or scp when rsync is missing).
"""

import logging
import shlex
import shutil
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from pyinfra.api import Config, Inventory, State

from hostdeploy.config import DeploymentRequest
from hostdeploy.errors import ConnectivityError, TransferError

log = logging.getLogger(__name__)

# Directory entries never copied to the host
TRANSFER_EXCLUDES = (".git",)


@dataclass
class RemoteContext:
    """Per-host context for remote operations."""
    needs_sudo: bool = False  # auto-detected from ssh_user != "root"


def make_remote_context(request: DeploymentRequest) -> RemoteContext:
    """Create a RemoteContext from a DeploymentRequest."""
    return RemoteContext(needs_sudo=(request.ssh_user != "root"))


@dataclass
class CommandResult:
    """Outcome of a single remote command."""
    command: str
    ok: bool
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Combined output, stderr last."""
        return "\n".join(s for s in (self.stdout.strip(), self.stderr.strip()) if s)


class RemoteCommandError(RuntimeError):
    """A remote command exited non-zero."""

    def __init__(self, result: CommandResult):
        self.result = result
        super().__init__(f"Remote command failed: {result.command}\n{result.stderr.strip()}")


class RsyncUnavailableError(RuntimeError):
    """rsync is not installed locally or on the remote host."""

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _sudo_kwargs(ctx: RemoteContext | None) -> dict:
    """Return pyinfra kwargs for sudo if needed."""
    if ctx and ctx.needs_sudo:
        return {"_sudo": True}
    return {}


def execute(host, cmd: str, ctx: RemoteContext | None = None, timeout: int = 30) -> CommandResult:
    """Run *cmd* on the host and return its result without raising.

    Runs with sudo when *ctx* says the login user needs it. A command that
    outlives *timeout* comes back as a failed result.
    """
    sudo_kw = _sudo_kwargs(ctx)
    try:
        ok, output = host.run_shell_command(
            command=cmd, print_output=False, print_input=False,
            _timeout=timeout, **sudo_kw,
        )
    except TimeoutError:
        log.debug("remote timed out after %ss: %s", timeout, cmd)
        return CommandResult(command=cmd, ok=False, stderr=f"timed out after {timeout}s")
    stdout = output.stdout if output else ""
    stderr = output.stderr if output else ""
    log.debug("remote %s: %s", "ok" if ok else "failed", cmd)
    return CommandResult(command=cmd, ok=bool(ok), stdout=stdout or "", stderr=stderr or "")


def run_remote_command(host, cmd: str, timeout: int = 30) -> str:
    """Run a shell command on the remote and return stdout."""
    result = execute(host, cmd, timeout=timeout)
    if not result.ok:
        raise RemoteCommandError(result)
    return result.stdout


def run_sudo_command(host, cmd: str, ctx: RemoteContext | None = None, timeout: int = 30) -> str:
    """Run a privileged shell command via pyinfra's native _sudo support."""
    result = execute(host, cmd, ctx=ctx, timeout=timeout)
    if not result.ok:
        raise RemoteCommandError(result)
    return result.stdout


def write_system_file(host, path: str, content: str, ctx: RemoteContext | None = None) -> None:
    """Write a file to a privileged location using pyinfra's native sudo.

    pyinfra's ``put_file`` with ``_sudo=True`` uploads to a temp file,
    then copies it into place with sudo.
    """
    sudo_kw = _sudo_kwargs(ctx)
    buf = BytesIO(content.encode("utf-8"))
    ok = host.put_file(filename_or_io=buf, remote_filename=path,
                       print_output=False, print_input=False, **sudo_kw)
    if not ok:
        raise RemoteCommandError(CommandResult(command=f"put {path}", ok=False,
                                               stderr=f"Failed to write file: {path}"))

# ---------------------------------------------------------------------------
# SSH connection
# ---------------------------------------------------------------------------

def _make_ssh_state(request: DeploymentRequest, connect_timeout: int = 30,
                    ssh_key_password: str | None = None):
    """Build pyinfra Inventory/State for an SSH connection."""
    override_data = {
        "ssh_user": request.ssh_user,
        "ssh_key": str(Path(request.ssh_key_path).expanduser()),
        "ssh_strict_host_key_checking": "accept-new",
    }
    if ssh_key_password is not None:
        override_data["ssh_key_password"] = ssh_key_password

    inventory = Inventory(([request.ssh_host], {}), override_data=override_data)
    config = Config(CONNECT_TIMEOUT=connect_timeout)
    state = State(inventory, config)
    state.init(inventory, config)
    return inventory, state


# Passphrases entered for encrypted keys, by key path, for the rest of the run
_key_passphrases: dict[str, str] = {}


@contextmanager
def ssh_connect(request: DeploymentRequest, connect_timeout: int = 30, retries: int = 3):
    """Context manager that yields a connected pyinfra Host object.

    If the SSH key is encrypted, prompts for the passphrase once; later
    sessions with the same key reuse it.

    Usage::

        with ssh_connect(request) as host:
            execute(host, "hostname")
    """
    from getpass import getpass

    key = request.ssh_key_path
    inventory, state = _make_ssh_state(request, connect_timeout,
                                       ssh_key_password=_key_passphrases.get(key))
    host = list(inventory)[0]

    last_err = None
    for attempt in range(retries):
        try:
            host.connect(raise_exceptions=True)
            last_err = None
            break
        except Exception as e:
            if "encrypted" in str(e).lower() and key not in _key_passphrases:
                password = getpass(f"SSH key passphrase ({key}): ")
                inventory, state = _make_ssh_state(request, connect_timeout, ssh_key_password=password)
                host = list(inventory)[0]
                try:
                    host.connect(raise_exceptions=True)
                    _key_passphrases[key] = password
                    last_err = None
                    break
                except Exception as e2:
                    last_err = e2
                    break
            last_err = e
            if attempt < retries - 1:
                time.sleep(5)
    if last_err is not None:
        raise ConnectivityError(
            f"Failed to connect to {request.target}: {last_err}"
        ) from last_err

    try:
        yield host
    finally:
        host.disconnect()


def check_connectivity(request: DeploymentRequest, timeout: int = 10) -> None:
    """Fail fast unless the host accepts our key within *timeout* seconds."""
    log.info("Checking SSH connectivity to %s (timeout %ss)", request.target, timeout)
    try:
        with ssh_connect(request, connect_timeout=timeout, retries=1) as host:
            result = execute(host, "true", timeout=timeout)
    except ConnectivityError:
        raise
    except Exception as e:
        raise ConnectivityError(f"SSH probe to {request.target} failed: {e}") from e
    if not result.ok:
        raise ConnectivityError(f"SSH probe to {request.target} failed: {result.output}")
    log.info("SSH connectivity OK")


def remote_home(host) -> str:
    """Return the login user's home directory on the host."""
    home = run_remote_command(host, 'printf %s "$HOME"').strip()
    if not home.startswith("/"):
        raise RemoteCommandError(CommandResult(command="printf $HOME", ok=False,
                                               stderr=f"unexpected home directory '{home}'"))
    return home.rstrip("/") or "/"

# ---------------------------------------------------------------------------
# Directory upload
# ---------------------------------------------------------------------------

def _ssh_options(request: DeploymentRequest, connect_timeout: int) -> list[str]:
    return [
        "-i", str(Path(request.ssh_key_path).expanduser()),
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", f"ConnectTimeout={connect_timeout}",
    ]


def rsync_directory(request: DeploymentRequest, local_path: str | Path, remote_path: str,
                    connect_timeout: int = 10) -> None:
    """Mirror *local_path* into *remote_path*, deleting stale remote files."""
    if shutil.which("rsync") is None:
        raise RsyncUnavailableError("'rsync' is not installed locally")

    local = str(Path(local_path).resolve())
    if not local.endswith("/"):
        local += "/"
    ssh_opts = " ".join(["ssh"] + [shlex.quote(o) for o in _ssh_options(request, connect_timeout)])

    cmd = ["rsync", "-az", "--delete"]
    for pattern in TRANSFER_EXCLUDES:
        cmd += ["--exclude", pattern]
    cmd += ["-e", ssh_opts, local, f"{request.target}:{remote_path}/"]
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError:
        raise RsyncUnavailableError("'rsync' is not installed locally")
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.strip()
        if e.returncode in (12, 127) and "command not found" in stderr.lower():
            raise RsyncUnavailableError(f"'rsync' is not installed on {request.ssh_host}")
        if e.returncode == 255:
            raise TransferError(f"SSH connection failed during rsync: {stderr}")
        raise TransferError(f"rsync failed (exit {e.returncode}): {stderr}")


def scp_directory(request: DeploymentRequest, local_path: str | Path, remote_path: str,
                  connect_timeout: int = 10) -> None:
    """Recursively copy the contents of *local_path* into *remote_path*."""
    entries = sorted(
        str(p) for p in Path(local_path).iterdir() if p.name not in TRANSFER_EXCLUDES
    )
    if not entries:
        return

    cmd = ["scp", "-r", *_ssh_options(request, connect_timeout), *entries,
           f"{request.target}:{remote_path}/"]
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError:
        raise TransferError("Neither 'rsync' nor 'scp' is installed locally")
    except subprocess.CalledProcessError as e:
        raise TransferError(f"scp failed (exit {e.returncode}): {e.stderr.strip()}")
