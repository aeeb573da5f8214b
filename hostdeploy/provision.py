"""Remote provisioning.

Ensure Docker and Nginx are installed, enabled at boot and running on a
Debian/Ubuntu host. Every step is safe to re-run.
"""

import logging
import shlex
from dataclasses import dataclass

from hostdeploy.config import DeploymentRequest
from hostdeploy.errors import ProvisioningError
from hostdeploy.remote import RemoteCommandError, RemoteContext, execute, run_sudo_command

log = logging.getLogger(__name__)

DOCKER_INSTALL_CMD = "curl -fsSL https://get.docker.com | sh"
NGINX_INSTALL_CMD = "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq nginx"
SERVICES = ("docker", "nginx")


@dataclass
class RemoteHostState:
    """Observed facts about the target host."""
    docker_installed: bool = False
    docker_running: bool = False
    nginx_installed: bool = False
    nginx_running: bool = False
    container_present: bool = False

    @property
    def provisioned(self) -> bool:
        return all((self.docker_installed, self.docker_running,
                    self.nginx_installed, self.nginx_running))


def _has_binary(host, name: str) -> bool:
    return execute(host, f"command -v {shlex.quote(name)}").ok


def _is_active(host, service: str) -> bool:
    return execute(host, f"systemctl is-active --quiet {shlex.quote(service)}").ok


def container_exists(host, name: str, ctx: RemoteContext | None = None) -> bool:
    """Return True if a container called *name* exists (running or not)."""
    result = execute(
        host,
        f"docker ps -aq --filter name={shlex.quote('^/' + name + '$')}",
        ctx=ctx,
    )
    return result.ok and bool(result.stdout.strip())


def read_host_state(host, app_name: str, ctx: RemoteContext | None = None) -> RemoteHostState:
    """Query the host for Docker, Nginx and release container facts."""
    state = RemoteHostState(
        docker_installed=_has_binary(host, "docker"),
        nginx_installed=_has_binary(host, "nginx"),
    )
    state.docker_running = state.docker_installed and _is_active(host, "docker")
    state.nginx_running = state.nginx_installed and _is_active(host, "nginx")
    state.container_present = state.docker_running and container_exists(host, app_name, ctx=ctx)
    return state


def _step(host, cmd: str, label: str, ctx: RemoteContext | None, timeout: int = 300) -> None:
    log.info("  %s", label)
    try:
        run_sudo_command(host, cmd, ctx=ctx, timeout=timeout)
    except RemoteCommandError as e:
        raise ProvisioningError(f"{label} failed: {e.result.output or e}") from e


def provision_host(host, request: DeploymentRequest, app_name: str,
                   ctx: RemoteContext | None = None) -> RemoteHostState:
    """Install and start Docker and Nginx where missing.

    Returns the host state observed after provisioning.
    """
    before = read_host_state(host, app_name, ctx=ctx)
    log.info("Provisioning %s (docker installed: %s, nginx installed: %s)",
             request.ssh_host, before.docker_installed, before.nginx_installed)

    _step(host, "apt-get update -qq", "Refreshing package index", ctx)

    if not before.docker_installed:
        _step(host, DOCKER_INSTALL_CMD, "Installing Docker", ctx, timeout=900)
        if request.ssh_user != "root":
            _step(host, f"usermod -aG docker {shlex.quote(request.ssh_user)}",
                  f"Adding {request.ssh_user} to the docker group", ctx)
    else:
        log.info("  Docker already installed")

    if not before.nginx_installed:
        _step(host, NGINX_INSTALL_CMD, "Installing Nginx", ctx, timeout=600)
    else:
        log.info("  Nginx already installed")

    for service in SERVICES:
        _step(host, f"systemctl enable --now {service}", f"Enabling and starting {service}", ctx)

    after = read_host_state(host, app_name, ctx=ctx)
    if not after.provisioned:
        raise ProvisioningError(
            f"Host not ready after provisioning: docker running={after.docker_running}, "
            f"nginx running={after.nginx_running}"
        )
    log.info("Remote host ready")
    return after
