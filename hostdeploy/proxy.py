"""Nginx reverse proxy.

Site config generation, and installation/removal of the per-app site
file on the remote host.
"""

import logging
import shlex
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from hostdeploy.errors import ProxyConfigError
from hostdeploy.remote import (
    RemoteCommandError, RemoteContext,
    execute, run_sudo_command, write_system_file,
)

log = logging.getLogger(__name__)

NGINX_SITES_AVAILABLE = "/etc/nginx/sites-available"
NGINX_SITES_ENABLED = "/etc/nginx/sites-enabled"
DEFAULT_SITE = "default"
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def site_available_path(app_name: str) -> str:
    return f"{NGINX_SITES_AVAILABLE}/{app_name}"


def site_enabled_path(app_name: str) -> str:
    return f"{NGINX_SITES_ENABLED}/{app_name}"


def render_site_config(app_name: str, port: int) -> str:
    """Render the Nginx site forwarding port 80 to *port*."""
    tmpl = _jinja_env.get_template("nginx.site.j2")
    return tmpl.render(app_name=app_name, port=int(port))


def _exists(host, path: str, ctx: RemoteContext | None) -> bool:
    return execute(host, f"test -e {shlex.quote(path)}", ctx=ctx).ok


def _restore(host, app_name: str, had_previous: bool, default_was_enabled: bool,
             ctx: RemoteContext | None) -> None:
    """Put the previously active site files back after a failed check."""
    available = shlex.quote(site_available_path(app_name))
    if had_previous:
        run_sudo_command(host, f"mv -f {available}.bak {available}", ctx=ctx)
    else:
        run_sudo_command(
            host, f"rm -f {available} {shlex.quote(site_enabled_path(app_name))}", ctx=ctx,
        )
    if default_was_enabled:
        run_sudo_command(
            host,
            f"ln -sf {shlex.quote(site_available_path(DEFAULT_SITE))} "
            f"{shlex.quote(site_enabled_path(DEFAULT_SITE))}",
            ctx=ctx,
        )


def configure_proxy(host, app_name: str, port: int, ctx: RemoteContext | None = None) -> str:
    """Install the site for *app_name*, check the config and reload Nginx.

    If ``nginx -t`` rejects the result, the previous site files are put
    back, Nginx is not reloaded and ``ProxyConfigError`` is raised.
    Returns the rendered config.
    """
    config = render_site_config(app_name, port)
    available = site_available_path(app_name)
    enabled = site_enabled_path(app_name)
    default_enabled = site_enabled_path(DEFAULT_SITE)

    had_previous = _exists(host, available, ctx)
    default_was_enabled = _exists(host, default_enabled, ctx)

    try:
        if had_previous:
            run_sudo_command(host, f"cp -f {shlex.quote(available)} {shlex.quote(available)}.bak", ctx=ctx)
        write_system_file(host, available, config, ctx=ctx)
        run_sudo_command(host, f"ln -sf {shlex.quote(available)} {shlex.quote(enabled)}", ctx=ctx)
        run_sudo_command(host, f"rm -f {shlex.quote(default_enabled)}", ctx=ctx)
    except RemoteCommandError as e:
        raise ProxyConfigError(f"Failed to install Nginx site: {e}") from e

    check = execute(host, "nginx -t", ctx=ctx)
    if not check.ok:
        log.error("nginx -t rejected the new site, restoring previous configuration")
        try:
            _restore(host, app_name, had_previous, default_was_enabled, ctx)
        except RemoteCommandError as e:
            raise ProxyConfigError(
                f"Nginx configuration test failed and restoring the previous site failed "
                f"({e.result.output}); {available} may hold the rejected config:\n{check.output}"
            ) from e
        raise ProxyConfigError(f"Nginx configuration test failed:\n{check.output}")

    try:
        if had_previous:
            run_sudo_command(host, f"rm -f {shlex.quote(available)}.bak", ctx=ctx)
        run_sudo_command(host, "systemctl reload nginx", ctx=ctx)
    except RemoteCommandError as e:
        raise ProxyConfigError(f"Failed to reload Nginx: {e}") from e

    log.info("Nginx now forwards port 80 to %s", port)
    return config


def remove_proxy(host, app_name: str, ctx: RemoteContext | None = None) -> None:
    """Remove the site for *app_name*, re-enable the default site, reload Nginx.

    Missing files are not an error. Nginx is only reloaded if it is running.
    """
    run_sudo_command(
        host,
        f"rm -f {shlex.quote(site_available_path(app_name))} "
        f"{shlex.quote(site_available_path(app_name))}.bak "
        f"{shlex.quote(site_enabled_path(app_name))}",
        ctx=ctx,
    )
    if _exists(host, site_available_path(DEFAULT_SITE), ctx):
        run_sudo_command(
            host,
            f"ln -sf {shlex.quote(site_available_path(DEFAULT_SITE))} "
            f"{shlex.quote(site_enabled_path(DEFAULT_SITE))}",
            ctx=ctx,
        )
    if execute(host, "systemctl is-active --quiet nginx").ok:
        run_sudo_command(host, "systemctl reload nginx", ctx=ctx)
