import typer

from dockhand.cli import core

def stop(
    identifier: str = typer.Argument(..., help="Service identifier"),
    cleanup: bool = typer.Option(False, "--cleanup", help="Also remove containers, volumes and the fetched files."),
):
    """
    Stop a service. Containers and volumes are kept unless --cleanup is given.
    """
    operation = "cleanup" if cleanup else "stop"
    typer.echo(f"Stopping {identifier}...")
    _, success = core.run_service_operation(identifier, operation)

    if not success:
        typer.echo(typer.style(f"Error: Failed to {operation} {identifier}.", fg=typer.colors.RED))
        raise typer.Exit(1)
    typer.echo("Service cleaned up." if cleanup else "Service stopped.")
