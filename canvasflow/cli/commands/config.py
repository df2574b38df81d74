"""canvasflow config — Show resolved configuration."""

import json

import typer
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()

_SECTIONS = [
    ("App", ["app_name", "debug", "log_level"]),
    ("Orchestrator", ["max_node_executions", "loop_mode", "max_loop_items", "simulated_node_delay_ms"]),
    ("HTTP Request", [
        "http_timeout_seconds", "http_verify_ssl", "http_response_size_limit_kb", "http_user_agent",
    ]),
    ("EmailJS", ["emailjs_api_url", "emailjs_max_payload_bytes"]),
]


def config_show(
    as_json: bool = typer.Option(False, "--json", help="Print settings as JSON"),
):
    """Show the resolved canvasflow configuration.

    Values come from CANVASFLOW_* environment variables and the .env file;
    anything not overridden shows its default. Overridden keys are marked *.

    Example:
        canvasflow config
        CANVASFLOW_LOOP_MODE=first canvasflow config --json
    """
    from canvasflow.config import CanvasflowConfig
    cfg = CanvasflowConfig()

    if as_json:
        typer.echo(json.dumps(cfg.model_dump(), indent=2))
        return

    overridden = cfg.model_fields_set
    table = Table(
        box=box.SIMPLE_HEAD,
        header_style="bold dim",
        title="[bold]canvasflow settings[/bold]",
    )
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_column("Environment", style="dim")

    for index, (section_name, fields) in enumerate(_SECTIONS):
        if index:
            table.add_section()
        table.add_row(f"[bold]{section_name}[/bold]", "", "")
        for attr in fields:
            marker = "*" if attr in overridden else " "
            table.add_row(f" {marker}{attr}", str(getattr(cfg, attr)), f"CANVASFLOW_{attr.upper()}")

    console.print(table)
    console.print("[dim]* set from the environment or .env[/dim]")
