"""Release execution.

Transfer the staged source to the host, replace the running container,
gate on its health, point Nginx at it and probe the result.
"""

import logging
import shlex
import time

import requests

from hostdeploy.config import DeploymentRequest, DeploySettings, remote_app_dir
from hostdeploy.errors import ReleaseError, TransferError, ValidationProbeError
from hostdeploy.proxy import configure_proxy
from hostdeploy.provision import container_exists
from hostdeploy.remote import (
    RemoteCommandError, RemoteContext, RsyncUnavailableError,
    execute, remote_home, run_remote_command, run_sudo_command,
    rsync_directory, scp_directory,
)
from hostdeploy.source import ReleaseArtifact

log = logging.getLogger(__name__)

LOG_TAIL_LINES = 50


def transfer_artifact(host, request: DeploymentRequest, artifact: ReleaseArtifact,
                      remote_dir: str, connect_timeout: int = 10) -> str:
    """Copy the artifact tree to *remote_dir*.

    Mirrors with rsync; falls back to scp when rsync is unavailable.
    Returns the tool that was used.
    """
    log.info("Transferring %s to %s:%s", artifact.path, request.ssh_host, remote_dir)
    try:
        run_remote_command(host, f"mkdir -p {shlex.quote(remote_dir)}")
    except RemoteCommandError as e:
        raise TransferError(f"Cannot create {remote_dir}: {e.result.output}") from e

    try:
        rsync_directory(request, artifact.path, remote_dir, connect_timeout=connect_timeout)
        return "rsync"
    except RsyncUnavailableError as e:
        log.warning("%s, falling back to scp", e)

    # scp cannot delete stale files, so start from an empty directory
    q = shlex.quote(remote_dir)
    try:
        run_remote_command(host, f"rm -rf {q} && mkdir -p {q}")
    except RemoteCommandError as e:
        raise TransferError(f"Cannot reset {remote_dir}: {e.result.output}") from e
    scp_directory(request, artifact.path, remote_dir, connect_timeout=connect_timeout)
    return "scp"


def swap_container(host, app_name: str, port: int, remote_dir: str,
                   ctx: RemoteContext | None = None) -> None:
    """Replace any container named *app_name* with a fresh build of *remote_dir*."""
    name = shlex.quote(app_name)
    steps = []
    if container_exists(host, app_name, ctx=ctx):
        steps.append((f"docker rm -f {name}", "Removing old container", 60))
    steps += [
        (f"docker build -t {name} {shlex.quote(remote_dir)}", "Building image", 900),
        (f"docker run -d --name {name} --restart unless-stopped "
         f"-e PORT={port} -p {port}:{port} {name}", "Starting container", 120),
    ]
    for cmd, label, timeout in steps:
        log.info("  %s", label)
        try:
            run_sudo_command(host, cmd, ctx=ctx, timeout=timeout)
        except RemoteCommandError as e:
            raise ReleaseError(f"{label} failed: {e.result.output or e}") from e


def container_logs(host, app_name: str, ctx: RemoteContext | None = None,
                   lines: int = LOG_TAIL_LINES) -> str:
    """Fetch the last *lines* log lines of the container."""
    result = execute(host, f"docker logs --tail {lines} {shlex.quote(app_name)}", ctx=ctx)
    return result.output


def health_gate(host, app_name: str, settle_seconds: float = 5,
                ctx: RemoteContext | None = None) -> None:
    """Wait *settle_seconds*, then require the container to be running."""
    log.info("Waiting %ss for the container to settle", settle_seconds)
    time.sleep(settle_seconds)

    result = execute(
        host, f"docker inspect -f '{{{{.State.Status}}}}' {shlex.quote(app_name)}", ctx=ctx,
    )
    status = result.stdout.strip() if result.ok else "missing"
    if status != "running":
        logs = container_logs(host, app_name, ctx=ctx)
        log.error("Container %s is %s. Recent logs:\n%s", app_name, status, logs)
        raise ReleaseError(f"Container '{app_name}' is {status}, not running", logs=logs)
    log.info("Container %s is running", app_name)


def validate_endpoints(host, request: DeploymentRequest, timeout: int = 10) -> None:
    """Probe the app port on the host and the proxy from here."""
    port = request.app_port
    probe = execute(
        host,
        f"curl -sS -o /dev/null -w '%{{http_code}}' --max-time {timeout} http://localhost:{port}/",
        timeout=timeout + 5,
    )
    code = probe.stdout.strip()
    if not probe.ok or not code.isdigit() or not 0 < int(code) < 400:
        raise ValidationProbeError("app", f"http://localhost:{port}/ on {request.ssh_host} "
                                          f"returned {code or probe.output or 'nothing'}")
    log.info("App answered on port %s (HTTP %s)", port, code)

    url = f"http://{request.ssh_host}/"
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ValidationProbeError("proxy", f"{url}: {e}") from e
    if not response.ok:
        raise ValidationProbeError("proxy", f"{url} returned HTTP {response.status_code}")
    log.info("Proxy answered at %s (HTTP %s)", url, response.status_code)


def release(host, request: DeploymentRequest, artifact: ReleaseArtifact,
            settings: DeploySettings, ctx: RemoteContext | None = None) -> None:
    """Make the staged artifact live behind Nginx, or raise."""
    try:
        remote_dir = remote_app_dir(settings, remote_home(host))
    except RemoteCommandError as e:
        raise TransferError(f"Cannot determine the deployment directory: {e.result.output}") from e
    transfer_artifact(host, request, artifact, remote_dir,
                      connect_timeout=settings.connect_timeout)
    swap_container(host, settings.app_name, request.app_port, remote_dir, ctx=ctx)
    health_gate(host, settings.app_name, settings.settle_seconds, ctx=ctx)
    configure_proxy(host, settings.app_name, request.app_port, ctx=ctx)
    validate_endpoints(host, request, timeout=settings.probe_timeout)
