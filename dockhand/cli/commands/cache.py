import typer
from rich.console import Console
from rich.table import Table

from dockhand.cli import core

console = Console()

def cache():
    """
    List the artifacts currently held in the local cache.
    """
    rows = []
    for kind, provider in (("service", False), ("provider", True)):
        for artifact in core.artifact_cache(provider).list_cached():
            rows.append((kind, artifact.identifier, str(artifact.local_path)))

    if not rows:
        typer.echo("The cache is empty.")
        return

    table = Table(title="Cached Artifacts")
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Identifier")
    table.add_column("Directory", style="green")
    for row in rows:
        table.add_row(*row)
    console.print(table)
