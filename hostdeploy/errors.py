"""Error taxonomy for the deployment workflow.

Every failure category carries its own process exit code so the CLI can
report which stage aborted the run.
"""

# Exit codes
SUCCESS = 0
INPUT_ERROR = 2
CONNECTIVITY_ERROR = 3
SOURCE_ERROR = 4
PROVISIONING_ERROR = 5
TRANSFER_ERROR = 6
RELEASE_ERROR = 7
PROXY_ERROR = 8
PROBE_ERROR = 9
TEARDOWN_ERROR = 10
CONFIG_ERROR = 11
INTERRUPTED = 130


class DeployError(Exception):
    """Base class for all workflow failures."""
    exit_code = 1
    stage = "deploy"


class InputValidationError(DeployError):
    """A deployment parameter is missing or malformed."""
    exit_code = INPUT_ERROR
    stage = "input"

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid deployment parameters: " + "; ".join(self.problems))


class ConfigError(DeployError):
    exit_code = CONFIG_ERROR
    stage = "config"


class ConnectivityError(DeployError):
    exit_code = CONNECTIVITY_ERROR
    stage = "connectivity"


class SourceStagingError(DeployError):
    exit_code = SOURCE_ERROR
    stage = "source"


class CloneError(SourceStagingError):
    """Fresh clone failed; there is nothing to deploy."""


class PullError(SourceStagingError):
    """Updating an existing working copy failed. Recoverable."""


class ProvisioningError(DeployError):
    exit_code = PROVISIONING_ERROR
    stage = "provision"


class TransferError(DeployError):
    exit_code = TRANSFER_ERROR
    stage = "transfer"


class ReleaseError(DeployError):
    """Container build, run or health gate failed."""
    exit_code = RELEASE_ERROR
    stage = "release"

    def __init__(self, message: str, logs: str | None = None):
        self.logs = logs
        super().__init__(message)


class ProxyConfigError(DeployError):
    """Nginx rejected the new site; the previous config is still active."""
    exit_code = PROXY_ERROR
    stage = "proxy"


class ValidationProbeError(DeployError):
    exit_code = PROBE_ERROR
    stage = "validate"

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        super().__init__(f"{endpoint} probe failed: {message}")


class TeardownError(DeployError):
    exit_code = TEARDOWN_ERROR
    stage = "teardown"
