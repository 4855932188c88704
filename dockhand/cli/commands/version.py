import importlib.metadata

import typer

from dockhand.internal.logging import get_logger

logger = get_logger(__name__)

def version():
    """
    Show the dockhand version.
    """
    try:
        # Only available once the package is installed
        package_version = importlib.metadata.version("dockhand")
        typer.echo(f"dockhand version: {package_version}")
    except importlib.metadata.PackageNotFoundError:
        typer.echo("dockhand is not installed or version metadata not found.")
        typer.echo("Please install the package first (e.g., pip install . or pip install -e .)")
        logger.warning("dockhand package version not found.")
        raise typer.Exit(1)
