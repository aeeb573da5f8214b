"""Deployment workflow.

Runs the stages in order against one host. Each stage must succeed
before the next starts; the first ``DeployError`` aborts the run.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from hostdeploy.config import DeploymentRequest, DeploySettings, validate_request
from hostdeploy.provision import provision_host
from hostdeploy.release import release
from hostdeploy.remote import check_connectivity, make_remote_context, ssh_connect
from hostdeploy.source import ReleaseArtifact, stage_source
from hostdeploy.teardown import teardown

log = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    request: DeploymentRequest
    artifact: ReleaseArtifact
    url: str
    log_file: Path | None = None
    torn_down: bool = False


def run_deployment(
    request: DeploymentRequest,
    settings: DeploySettings,
    *,
    cleanup: bool = False,
    log_file: Path | None = None,
) -> DeploymentResult:
    """Validate, stage, provision and release; optionally tear down afterwards."""
    request = validate_request(request)
    log.info("Deploying %s (%s) to %s on port %s",
             request.repo_url, request.branch, request.target, request.app_port)

    log.info("Staging source")
    artifact = stage_source(request, settings)

    check_connectivity(request, timeout=settings.connect_timeout)

    ctx = make_remote_context(request)
    with ssh_connect(request, connect_timeout=settings.connect_timeout) as host:
        log.info("Provisioning remote host")
        provision_host(host, request, settings.app_name, ctx=ctx)

        log.info("Releasing %s", settings.app_name)
        release(host, request, artifact, settings, ctx=ctx)

        torn_down = False
        if cleanup:
            teardown(host, request, settings, ctx=ctx)
            torn_down = True

    url = f"http://{request.ssh_host}/"
    log.info("Deployment finished: %s", url)
    return DeploymentResult(request=request, artifact=artifact, url=url,
                            log_file=log_file, torn_down=torn_down)
