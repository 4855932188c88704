import typer
from rich.console import Console
from rich.table import Table

from dockhand.cli import core
from dockhand.kernel.errors import DockhandError
from dockhand.kernel.manifest import ServiceManifest

console = Console()

def resolve(
    identifier: str = typer.Argument(..., help="Service or provider identifier"),
    provider: bool = typer.Option(False, "--provider", help="Treat the identifier as a provider."),
):
    """
    Fetch an artifact into the local cache and summarise its manifest.
    """
    try:
        artifact, manifest = core.run_async(core.describe(identifier, provider=provider))
    except DockhandError as e:
        core.fail(str(e))

    table = Table(title=f"{manifest.name} {manifest.version}", show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Directory", str(artifact.local_path))
    table.add_row("Source", "local path" if artifact.user_provided else "cache")
    if isinstance(manifest, ServiceManifest):
        docker = manifest.docker
        table.add_row("Compose file", docker.compose_file)
        table.add_row("Compose service", docker.service_name)
        table.add_row("Image", docker.image or "-")
        table.add_row("Ports", ", ".join(str(p) for p in docker.ports) or "dynamic")
    else:
        table.add_row("Provider id", manifest.id)
        table.add_row("Type", manifest.type)
        table.add_row("Entry", manifest.entry)
        table.add_row("Service", manifest.service_url or "-")
    table.add_row("Capabilities", ", ".join(manifest.capabilities) or "-")

    console.print(table)
