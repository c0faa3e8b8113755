#!/usr/bin/env python3
"""
Resticara command line interface
Runs restic backups, prunes repositories and generates systemd timers
"""
import logging
from typing import Optional

import typer
from rich.console import Console

from config import ResticaraConfig
from handlers.operations import OperationsHandler
from models.jobs import ResticaraError
from services.template import ReportTemplateService

EXIT_FAILED = 1
EXIT_FATAL = 2

app = typer.Typer(
    help="Resticara: restic backup orchestration with systemd timers",
    no_args_is_help=True,
    add_completion=False,
)
console = Console(highlight=False, soft_wrap=True)


class CLIState:
    """Options shared by every subcommand"""

    def __init__(self):
        self.config_path: Optional[str] = None
        self.mail_template: Optional[str] = None


state = CLIState()


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def fail(message: str) -> typer.Exit:
    console.print(f"Error: {message}", markup=False)
    return typer.Exit(code=EXIT_FATAL)


def load_handler() -> OperationsHandler:
    config = ResticaraConfig.discover(state.config_path)
    return OperationsHandler(config, console=console)


@app.callback()
def main_options(
    config: Optional[str] = typer.Option(None, "--config", help="Path to a custom config.yaml"),
    mail_template: Optional[str] = typer.Option(None, "--mail-template", help="Path to a custom mail template"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    configure_logging(verbose)
    state.config_path = config
    state.mail_template = mail_template


@app.command()
def run(job_key: Optional[str] = typer.Argument(None, help="Job key such as dir:home; all jobs if omitted")):
    """Run backups (all or a specific job)"""
    try:
        handler = load_handler()
        template_service = ReportTemplateService.discover(state.mail_template)
        report = handler.run_backups(job_key, template_service=template_service)
    except ResticaraError as e:
        raise fail(str(e))

    if not report.succeeded:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def prune(repository: str = typer.Argument(..., help="'all' or a repository from the config")):
    """Prune restic repositories"""
    try:
        success = load_handler().prune_repositories(repository)
    except ResticaraError as e:
        raise fail(str(e))

    if not success:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def gentimer():
    """Generate systemd service and timer files"""
    try:
        load_handler().generate_timers()
    except ResticaraError as e:
        raise fail(f"generating timers: {e}")


def main():
    app()


if __name__ == "__main__":
    main()
