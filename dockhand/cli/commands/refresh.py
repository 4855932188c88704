import typer

from dockhand.cli import core
from dockhand.kernel.errors import DockhandError

def refresh(
    identifier: str = typer.Argument(..., help="Service or provider identifier"),
    provider: bool = typer.Option(False, "--provider", help="Refresh a provider instead of a service."),
):
    """
    Forget a cached resolution and delete its fetched files.
    """
    registry = core.provider_registry() if provider else core.service_registry()
    try:
        core.run_async(registry.refresh(identifier))
    except (DockhandError, OSError) as e:
        core.fail(str(e))
    typer.echo(f"Refreshed {identifier}. The next use fetches it again.")
