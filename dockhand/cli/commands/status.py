import json

import typer

from dockhand.cli import core
from dockhand.internal.logging import get_logger

logger = get_logger(__name__)

def status(identifier: str = typer.Argument(..., help="Service identifier")):
    """
    Show the live status of a service as JSON.
    """
    handle, service_status = core.run_service_operation(identifier, "status")

    payload = {
        "running": service_status.running,
        "health": service_status.health.value,
        "state": service_status.state,
        "containerId": service_status.container_id,
        **handle.info().as_dict(),
    }
    logger.debug("Service status", identifier=identifier, state=service_status.state)
    typer.echo(json.dumps(payload, indent=2))
