"""canvasflow CLI — Typer application."""

import logging

import typer
from rich.console import Console

from canvasflow.version import __version__

app = typer.Typer(
    name="canvasflow",
    help="canvasflow — run and check canvas workflow graphs from the terminal.",
    no_args_is_help=True,
)
console = Console()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """canvasflow CLI."""
    if version:
        console.print(f"canvasflow v{__version__}")
        raise typer.Exit()

    from canvasflow.config import config

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


from canvasflow.cli.commands import config as config_cmd, run, validate  # noqa: E402

app.command(name="run", help="Execute a workflow file")(run.run_workflow)
app.command(name="validate", help="Check a workflow file for structural problems")(validate.validate_workflow)
app.command(name="config", help="Show resolved configuration")(config_cmd.config_show)


if __name__ == "__main__":
    app()
