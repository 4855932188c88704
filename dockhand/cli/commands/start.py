import typer
from rich.console import Console

from dockhand.cli import core

console = Console()

def start(identifier: str = typer.Argument(..., help="Service identifier, e.g. github:owner/repo")):
    """
    Start a container-backed service and wait until it is healthy.
    """
    console.print(f"Starting [cyan]{identifier}[/cyan]...")
    handle, success = core.run_service_operation(identifier, "start")

    if success:
        info = handle.info()
        typer.echo(f"{info.container_name} is running and healthy.")
        typer.echo(f"Ports: {', '.join(str(p) for p in info.ports) or '-'}")
        typer.echo(f"Health check: {info.health_check_url}")
    else:
        typer.echo(typer.style(f"Error: Failed to start {identifier}.", fg=typer.colors.RED))
        raise typer.Exit(1)
