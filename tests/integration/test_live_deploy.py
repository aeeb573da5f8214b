"""Live deployment to a real host: deploy twice, then tear down twice."""

import pytest
import requests

from hostdeploy.config import validate_request
from hostdeploy.remote import make_remote_context, run_remote_command, ssh_connect
from hostdeploy.teardown import teardown
from hostdeploy.workflow import run_deployment

pytestmark = pytest.mark.integration


def _container_state(request, app_name):
    with ssh_connect(request) as host:
        ctx = make_remote_context(request)
        return run_remote_command(
            host,
            f"{'sudo ' if ctx.needs_sudo else ''}docker ps -a --filter name='^/{app_name}$' "
            "--format '{{.Status}} {{.Ports}}'",
        )


def test_deploy(live_request, live_settings):
    result = run_deployment(live_request, live_settings)
    assert requests.get(result.url, timeout=10).ok
    assert "Up" in _container_state(result.request, live_settings.app_name)


def test_redeploy(live_request, live_settings):
    """A second run replaces the container and leaves exactly one behind."""
    result = run_deployment(live_request, live_settings)
    assert requests.get(result.url, timeout=10).ok
    state = _container_state(result.request, live_settings.app_name)
    assert len(state.splitlines()) == 1


@pytest.mark.parametrize("attempt", [1, 2])
def test_teardown(live_request, live_settings, attempt):
    request = validate_request(live_request)
    with ssh_connect(request) as host:
        teardown(host, request, live_settings, ctx=make_remote_context(request))
    assert _container_state(request, live_settings.app_name).strip() == ""
