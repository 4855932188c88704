import typer

from dockhand.cli.commands import (
    cache,
    doctor,
    logs,
    refresh,
    resolve,
    restart,
    start,
    status,
    stop,
    version,
)
from dockhand.internal.logging import enable_console_logging

app = typer.Typer(
    name="dockhand",
    help="Resolve, cache and run container-backed services by identifier.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also print log events to stderr."),
):
    if verbose:
        enable_console_logging("DEBUG")


app.command("resolve")(resolve.resolve)
app.command("start")(start.start)
app.command("stop")(stop.stop)
app.command("restart")(restart.restart)
app.command("status")(status.status)
app.command("logs")(logs.logs)
app.command("refresh")(refresh.refresh)
app.command("cache")(cache.cache)
app.command("doctor")(doctor.doctor)
app.command("version")(version.version)

if __name__ == "__main__":
    app()
