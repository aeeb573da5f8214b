"""Teardown: remove everything a release created on the host."""

import logging
import shlex

from hostdeploy.config import DeploymentRequest, DeploySettings, remote_app_dir
from hostdeploy.errors import TeardownError
from hostdeploy.provision import container_exists
from hostdeploy.proxy import remove_proxy
from hostdeploy.remote import (
    RemoteCommandError, RemoteContext, execute, remote_home, run_sudo_command,
)

log = logging.getLogger(__name__)


def teardown(host, request: DeploymentRequest, settings: DeploySettings,
             ctx: RemoteContext | None = None) -> None:
    """Stop and remove the container, image, Nginx site and deployment directory.

    Safe to run repeatedly: anything already gone is skipped. Docker and
    Nginx themselves are left installed.
    """
    name = settings.app_name
    log.info("Tearing down %s on %s", name, request.ssh_host)
    docker_available = execute(host, "command -v docker").ok

    try:
        if docker_available and container_exists(host, name, ctx=ctx):
            log.info("  Removing container %s", name)
            run_sudo_command(host, f"docker rm -f {shlex.quote(name)}", ctx=ctx, timeout=60)
        if docker_available and execute(host, f"docker image inspect {shlex.quote(name)}", ctx=ctx).ok:
            log.info("  Removing image %s", name)
            run_sudo_command(host, f"docker rmi -f {shlex.quote(name)}", ctx=ctx, timeout=60)

        log.info("  Removing Nginx site")
        remove_proxy(host, name, ctx=ctx)

        remote_dir = remote_app_dir(settings, remote_home(host))
        log.info("  Removing %s", remote_dir)
        run_sudo_command(host, f"rm -rf {shlex.quote(remote_dir)}", ctx=ctx)
    except RemoteCommandError as e:
        raise TeardownError(f"Teardown failed: {e}") from e

    log.info("Teardown complete")
