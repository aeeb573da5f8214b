import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hostdeploy import __version__
from hostdeploy.config import load_config, remember_request, save_config
from hostdeploy.errors import INTERRUPTED, ConfigError, DeployError
from hostdeploy.logs import setup_logging
from hostdeploy.prompts import collect_request
from hostdeploy.workflow import run_deployment

# CLI Application
#
# Typer-based CLI: prompts for parameters, deploys, and optionally
# tears the release down again.

app = typer.Typer(
    name="hostdeploy",
    help="Provision a host with Docker and Nginx and deploy an app behind it.",
    add_completion=False,
)
console = Console()
log = logging.getLogger("hostdeploy.cli")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"hostdeploy {__version__}")
        raise typer.Exit()


def _print_summary(result) -> None:
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("URL", result.url)
    table.add_row("Repository", result.artifact.repo_url)
    table.add_row("Branch", result.artifact.branch)
    table.add_row("Commit", result.artifact.commit or "-")
    table.add_row("Port", str(result.request.app_port))
    if result.torn_down:
        table.add_row("Cleanup", "release removed")
    if result.log_file:
        table.add_row("Log", str(result.log_file))
    console.print(table)


@app.command()
def deploy(
    cleanup: bool = typer.Option(False, "--cleanup", help="Remove the release again after a successful deployment"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.toml"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True,
                                 help="Show the version and exit"),
):
    """Deploy an application to a remote host.

    Prompts for the repository, credentials and target host, then
    provisions the host, runs the app in Docker and puts Nginx in front.
    """
    try:
        cfg = load_config(config)
    except ConfigError as e:
        # log_dir is unknown here; log to the working directory
        log_path, _ = setup_logging(console=console)
        log.error("%s stage failed: %s", e.stage, e)
        console.print(f"[red]Error:[/red] Invalid config file. Log saved to {escape(str(log_path))}")
        raise typer.Exit(code=e.exit_code)

    log_path, redactor = setup_logging(cfg.settings.log_dir, console=console)
    log.info("Logging to %s", log_path)

    try:
        request = collect_request(cfg.last_run)
        redactor.add_secret(request.auth_token)
        redactor.add_secret(quote(request.auth_token, safe=""))
        result = run_deployment(request, cfg.settings, cleanup=cleanup, log_file=log_path)
    except DeployError as e:
        log.error("%s stage failed: %s", e.stage, e)
        console.print(f"[red]Deployment failed.[/red] Log saved to {escape(str(log_path))}")
        raise typer.Exit(code=e.exit_code)
    except (KeyboardInterrupt, typer.Abort):
        log.error("Interrupted by operator")
        raise typer.Exit(code=INTERRUPTED)

    remember_request(cfg, result.request)
    try:
        save_config(cfg, config)
    except OSError as e:
        log.warning("Could not save defaults for next run: %s", e)

    console.print(f"[bold green]Deployed {result.artifact.repo_url} at {result.url}[/bold green]")
    _print_summary(result)


def app_main() -> None:
    """Entry point for the hostdeploy CLI."""
    app()
