import typer

from dockhand.cli import core

def restart(identifier: str = typer.Argument(..., help="Service identifier")):
    """
    Restart a service: stop, short pause, start.
    """
    typer.echo(f"Restarting {identifier}...")
    handle, success = core.run_service_operation(identifier, "restart")

    if not success:
        typer.echo(typer.style("Failed to restart service. Please check logs.", fg=typer.colors.RED))
        raise typer.Exit(1)
    typer.echo(f"{handle.info().container_name} restarted successfully.")
