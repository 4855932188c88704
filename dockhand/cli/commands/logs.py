import typer

from dockhand.cli import core

def logs(
    identifier: str = typer.Argument(..., help="Service identifier"),
    lines: int = typer.Option(50, "--lines", "-n", min=1, help="Number of lines from the end of the log."),
):
    """
    Print the most recent log lines of a service.
    """
    _, output = core.run_service_operation(identifier, "logs", lines=lines)
    if not output:
        typer.echo("No log output.")
        return
    typer.echo(output.rstrip("\n"))
