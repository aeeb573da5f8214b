"""Interactive collection of deployment parameters."""

from typing import Any

import typer

from hostdeploy.config import DEFAULT_BRANCH, DeploymentRequest


def _ask(text: str, default: Any = None, **kwargs) -> str:
    if default is not None:
        default = str(default)
    value = typer.prompt(text, default=default, type=str, **kwargs)
    return value.strip()


def collect_request(defaults: dict[str, Any] | None = None) -> DeploymentRequest:
    """Prompt the operator for every deployment parameter.

    *defaults* (the last successful run) pre-fill everything but the token.
    Nothing is validated here; see ``validate_request``.
    """
    d = defaults or {}
    repo_url = _ask("Git repository URL", d.get("repo_url"))
    token = _ask("Personal access token", hide_input=True)
    branch = _ask("Branch", d.get("branch") or DEFAULT_BRANCH)
    ssh_user = _ask("Remote username", d.get("ssh_user"))
    ssh_host = _ask("Remote host address", d.get("ssh_host"))
    ssh_key = _ask("Path to SSH private key", d.get("ssh_key_path"))
    app_port = _ask("Application port", d.get("app_port"))
    return DeploymentRequest(
        repo_url=repo_url,
        auth_token=token,
        ssh_user=ssh_user,
        ssh_host=ssh_host,
        ssh_key_path=ssh_key,
        app_port=app_port,
        branch=branch,
    )
