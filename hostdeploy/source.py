"""Source staging.

Clone or update the local working copy of the application with git,
authenticating with an access token embedded in the clone URL.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from hostdeploy.config import DeploymentRequest, DeploySettings, local_artifact_dir
from hostdeploy.errors import CloneError, PullError, SourceStagingError
from hostdeploy.logs import MASK

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReleaseArtifact:
    """A staged source tree, ready to be transferred."""
    repo_url: str
    branch: str
    path: Path
    commit: str | None = None
    cloned: bool = False
    updated: bool = True


def authenticated_url(repo_url: str, token: str) -> str:
    """Embed *token* as the credential of an http(s) *repo_url*.

    ``https://github.com/org/app.git`` becomes
    ``https://<token>@github.com/org/app.git``. Other schemes (ssh, file)
    are returned unchanged.
    """
    parts = urlsplit(repo_url)
    if parts.scheme not in ("http", "https") or not token:
        return repo_url
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"{quote(token, safe='')}@{netloc}"))


def redact(text: str, token: str) -> str:
    """Mask every occurrence of *token* (raw or URL-quoted) in *text*."""
    if not token:
        return text
    for secret in {token, quote(token, safe="")}:
        text = text.replace(secret, MASK)
    return text


def _git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess:
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    return subprocess.run(
        ["git", *args], cwd=cwd, env=env,
        capture_output=True, text=True, check=False,
    )


def _head_commit(path: Path) -> str | None:
    result = _git(["rev-parse", "--short", "HEAD"], cwd=path)
    return result.stdout.strip() if result.returncode == 0 else None


def clone_repository(request: DeploymentRequest, path: Path) -> None:
    """Clone *request*'s branch into *path*. Raises ``CloneError``."""
    token = request.auth_token
    log.info("Cloning %s (branch %s) into %s", request.repo_url, request.branch, path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        result = _git(["clone", "--branch", request.branch,
                       authenticated_url(request.repo_url, token), str(path)])
    except FileNotFoundError:
        raise CloneError("'git' is not installed")
    if result.returncode != 0:
        raise CloneError(f"git clone failed: {redact(result.stderr.strip(), token)}")

    # Keep the token out of .git/config
    _git(["remote", "set-url", "origin", request.repo_url], cwd=path)


def update_repository(request: DeploymentRequest, path: Path) -> None:
    """Switch *path* to the requested branch and pull it.

    Raises ``SourceStagingError`` if the branch cannot be checked out and
    ``PullError`` if the pull fails; the branch is switched either way.
    """
    token = request.auth_token
    log.info("Updating existing working copy %s (branch %s)", path, request.branch)

    if _git(["checkout", request.branch], cwd=path).returncode != 0:
        result = _git(["checkout", "-b", request.branch], cwd=path)
        if result.returncode != 0:
            raise SourceStagingError(
                f"Cannot switch {path} to branch '{request.branch}': {result.stderr.strip()}"
            )

    result = _git(["pull", authenticated_url(request.repo_url, token), request.branch], cwd=path)
    if result.returncode != 0:
        raise PullError(f"git pull failed: {redact(result.stderr.strip(), token)}")


def stage_source(request: DeploymentRequest, settings: DeploySettings) -> ReleaseArtifact:
    """Produce an up-to-date local ReleaseArtifact for *request*."""
    path = local_artifact_dir(settings)
    if path.is_dir():
        cloned, updated = False, True
        try:
            update_repository(request, path)
        except PullError as e:
            log.warning("%s; continuing with the existing local copy", e)
            updated = False
    else:
        clone_repository(request, path)
        cloned, updated = True, True

    artifact = ReleaseArtifact(
        repo_url=request.repo_url, branch=request.branch, path=path,
        commit=_head_commit(path), cloned=cloned, updated=updated,
    )
    log.info("Source staged at %s (commit %s)", path, artifact.commit or "unknown")
    return artifact
