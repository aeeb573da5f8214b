"""Fixtures for live deployments against a real host.

Requires a `.env` file in the repo root (see `.env.sample`). Tests are
skipped when the target host is not configured.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from hostdeploy.config import DeploymentRequest, DeploySettings
from hostdeploy.logs import setup_logging

# Load .env from repo root
_env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_env_path)

REQUIRED_VARS = (
    "HOSTDEPLOY_TEST_HOST",
    "HOSTDEPLOY_TEST_USER",
    "HOSTDEPLOY_TEST_SSH_KEY_PATH",
    "HOSTDEPLOY_TEST_REPO",
    "HOSTDEPLOY_TEST_TOKEN",
)


@pytest.fixture(scope="session")
def live_request():
    """A deployment request for the configured test host."""
    missing = [name for name in REQUIRED_VARS if not os.environ.get(name)]
    if missing:
        pytest.skip(f"live host not configured ({', '.join(missing)} unset)")

    return DeploymentRequest(
        repo_url=os.environ["HOSTDEPLOY_TEST_REPO"],
        auth_token=os.environ["HOSTDEPLOY_TEST_TOKEN"],
        ssh_user=os.environ["HOSTDEPLOY_TEST_USER"],
        ssh_host=os.environ["HOSTDEPLOY_TEST_HOST"],
        ssh_key_path=os.environ["HOSTDEPLOY_TEST_SSH_KEY_PATH"],
        app_port=os.environ.get("HOSTDEPLOY_TEST_PORT", "5000"),
        branch=os.environ.get("HOSTDEPLOY_TEST_BRANCH", "main"),
    )


@pytest.fixture(scope="session")
def live_settings(tmp_path_factory):
    root = tmp_path_factory.mktemp("live")
    settings = DeploySettings(
        app_name=os.environ.get("HOSTDEPLOY_TEST_APP_NAME", "hostdeploy-test"),
        workdir=str(root / "work"),
        log_dir=str(root / "logs"),
    )
    _, redactor = setup_logging(settings.log_dir)
    redactor.add_secret(os.environ.get("HOSTDEPLOY_TEST_TOKEN", ""))
    return settings
