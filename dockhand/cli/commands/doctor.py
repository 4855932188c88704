import os
import shutil
import sys

import typer

from dockhand.adapters.process import CommandFailed, run_command, split_command
from dockhand.cli import core
from dockhand.internal import paths
from dockhand.internal.constants import DEFAULT_COMPOSE_COMMAND, DEFAULT_GIT_COMMAND
from dockhand.internal.logging import get_logger

logger = get_logger(__name__)

def doctor():
    """
    Check that the tools dockhand drives are installed and usable.
    """
    typer.echo("Running dockhand doctor checks...\n")
    all_passed = True

    def check(description: str, func):
        nonlocal all_passed
        typer.echo(f"- {description}...", nl=False)
        result, message = func()
        if result:
            typer.echo(f" {typer.style('PASSED', fg=typer.colors.GREEN)}")
        else:
            typer.echo(f" {typer.style('FAILED', fg=typer.colors.RED)}")
            typer.echo(f"  Reason: {message}")
            all_passed = False

    # --- System Checks ---
    typer.echo(typer.style("System Information:", fg=typer.colors.BLUE, bold=True))
    typer.echo(f"  Python Version: {sys.version.split()[0]}")
    typer.echo("")

    # --- External Tools ---
    typer.echo(typer.style("External Tools:", fg=typer.colors.BLUE, bold=True))

    def check_git():
        found = shutil.which(DEFAULT_GIT_COMMAND)
        return found is not None, "git is not on PATH; github: identifiers cannot be fetched."
    check("git", check_git)

    compose_command = paths.env_str("DOCKHAND_COMPOSE_COMMAND", DEFAULT_COMPOSE_COMMAND)

    def check_compose():
        try:
            core.run_async(run_command([*split_command(compose_command), "version"], timeout=15))
        except CommandFailed as e:
            logger.warning("Compose check failed", command=compose_command, error=str(e))
            return False, f"'{compose_command} version' failed: {e}"
        return True, ""
    check(compose_command, check_compose)

    # --- Local Filesystem Checks ---
    typer.echo(typer.style("\nLocal Filesystem Checks:", fg=typer.colors.BLUE, bold=True))

    def check_app_data_dir():
        app_dir = paths.get_app_data_dir()
        return os.access(app_dir, os.W_OK), f"Directory '{app_dir}' is not writable."
    check("App data directory", check_app_data_dir)

    def check_cache_dirs():
        dirs = [paths.get_services_cache_dir(), paths.get_providers_cache_dir()]
        missing = [str(d) for d in dirs if not d.is_dir()]
        return not missing, f"Missing cache directories: {', '.join(missing)}"
    check("Cache directories", check_cache_dirs)

    typer.echo("\n--- Doctor Check Summary ---")
    if all_passed:
        typer.echo(typer.style("All checks PASSED!", fg=typer.colors.GREEN, bold=True))
    else:
        typer.echo(typer.style("Some checks FAILED. Please review the output above.", fg=typer.colors.RED, bold=True))
        raise typer.Exit(1)
