"""Configuration and deployment parameters.

Local settings and the parameters of the last successful run are kept in
``~/.config/hostdeploy/config.toml``. The access token is never written.
"""

import os
import re
import tomllib
from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Any

import tomli_w

from hostdeploy.errors import ConfigError, InputValidationError

DEFAULT_APP_NAME = "sample-app"
DEFAULT_BRANCH = "main"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeploymentRequest:
    """Parameters for one deployment run. Immutable once validated."""
    repo_url: str
    auth_token: str = field(repr=False)
    ssh_user: str
    ssh_host: str
    ssh_key_path: str
    app_port: int | str
    branch: str = DEFAULT_BRANCH

    @property
    def target(self) -> str:
        return f"{self.ssh_user}@{self.ssh_host}"


@dataclass
class DeploySettings:
    """Non-secret knobs that rarely change between runs."""
    app_name: str = DEFAULT_APP_NAME
    workdir: str = "."
    log_dir: str = "."
    remote_dir: str | None = None  # None: <login home>/<app_name>
    settle_seconds: float = 5
    connect_timeout: int = 10
    probe_timeout: int = 10


@dataclass
class HostDeployConfig:
    """Top-level config file contents."""
    settings: DeploySettings = field(default_factory=DeploySettings)
    last_run: dict[str, Any] = field(default_factory=dict)


# Request fields remembered between runs (everything but the token)
REMEMBERED_FIELDS = ("repo_url", "branch", "ssh_user", "ssh_host", "ssh_key_path", "app_port")

# ---------------------------------------------------------------------------
# Config file paths
# ---------------------------------------------------------------------------

def config_dir() -> Path:
    """Return the hostdeploy config directory, creating it if needed."""
    d = Path.home() / ".config" / "hostdeploy"
    d.mkdir(parents=True, exist_ok=True)
    return d


def config_path() -> Path:
    """Return the path to the config file."""
    return config_dir() / "config.toml"

# ---------------------------------------------------------------------------
# Load / Save
# ---------------------------------------------------------------------------

def load_config(path: Path | None = None) -> HostDeployConfig:
    """Load configuration from TOML. Returns defaults if the file is missing."""
    p = path or config_path()
    if not p.exists():
        return HostDeployConfig()

    try:
        with open(p, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Cannot parse {p}: {e}") from e

    sdata = dict(raw.get("settings", {}))
    valid_keys = {f.name for f in DeploySettings.__dataclass_fields__.values()}
    unknown = set(sdata) - valid_keys
    if unknown:
        raise ConfigError(
            f"Unknown key(s) in [settings]: {', '.join(sorted(unknown))}. "
            f"Valid keys: {', '.join(sorted(valid_keys))}"
        )

    last_run = {k: v for k, v in raw.get("last_run", {}).items() if k in REMEMBERED_FIELDS}
    return HostDeployConfig(settings=DeploySettings(**sdata), last_run=last_run)


def save_config(config: HostDeployConfig, path: Path | None = None) -> None:
    """Write configuration to TOML."""
    p = path or config_path()
    p.parent.mkdir(parents=True, exist_ok=True)

    settings = {k: v for k, v in asdict(config.settings).items() if v is not None}
    raw: dict = {"settings": settings}
    last_run = {k: v for k, v in config.last_run.items() if k in REMEMBERED_FIELDS}
    if last_run:
        raw["last_run"] = last_run

    with open(p, "wb") as f:
        tomli_w.dump(raw, f)
    os.chmod(p, 0o600)


def remember_request(config: HostDeployConfig, request: DeploymentRequest) -> None:
    """Store the non-secret fields of *request* as next run's defaults."""
    config.last_run = {name: getattr(request, name) for name in REMEMBERED_FIELDS}

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_BRANCH_RE = re.compile(r'^[a-zA-Z0-9._/-]+\Z')
_PORT_RE = re.compile(r'^[0-9]+\Z')


def validate_request(request: DeploymentRequest) -> DeploymentRequest:
    """Check every field of *request* at once.

    Returns a normalized copy (``~`` expanded in the key path, port as
    ``int``). Raises ``InputValidationError`` listing every problem found.
    """
    problems = []
    for name in ("repo_url", "auth_token", "ssh_user", "ssh_host"):
        if not str(getattr(request, name) or "").strip():
            problems.append(f"{name} must not be empty")

    branch = (request.branch or "").strip()
    if not branch:
        problems.append("branch must not be empty")
    elif not _BRANCH_RE.match(branch) or ".." in branch:
        problems.append(f"invalid branch name '{branch}'")

    key_path = str(request.ssh_key_path or "").strip()
    if not key_path:
        problems.append("ssh_key_path must not be empty")
    else:
        key_path = str(Path(key_path).expanduser())
        if not Path(key_path).is_file():
            problems.append(f"SSH key '{key_path}' does not exist")
        elif not os.access(key_path, os.R_OK):
            problems.append(f"SSH key '{key_path}' is not readable")

    port_text = str(request.app_port).strip()
    port = 0
    if not _PORT_RE.match(port_text) or not (0 < int(port_text) <= 65535):
        problems.append(f"app_port must be a positive integer no greater than 65535, got '{request.app_port}'")
    else:
        port = int(port_text)

    if problems:
        raise InputValidationError(problems)

    return replace(
        request,
        repo_url=request.repo_url.strip(),
        ssh_user=request.ssh_user.strip(),
        ssh_host=request.ssh_host.strip(),
        ssh_key_path=key_path,
        app_port=port,
        branch=branch,
    )

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

def local_artifact_dir(settings: DeploySettings) -> Path:
    """Return the local staging directory for the app source."""
    return Path(settings.workdir).expanduser() / settings.app_name


def remote_app_dir(settings: DeploySettings, home: str) -> str:
    """Return the deployment directory on the remote host.

    *home* is the login user's home directory as reported by the host.
    """
    if settings.remote_dir:
        return settings.remote_dir
    return f"{home.rstrip('/')}/{settings.app_name}"
