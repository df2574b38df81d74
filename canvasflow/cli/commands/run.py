"""canvasflow run — Execute a workflow file from the command line."""

import asyncio
from typing import Any, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from canvasflow.expressions import stringify
from canvasflow.types import NotificationType, RunOutcome, RunStatus

console = Console()

_STATUS_COLOR = {
    "success": "green",
    "error": "red",
    "cancelled": "yellow",
    "running": "blue",
    "completed": "green",
    "partial": "yellow",
    "failed": "red",
}
_TOAST_COLOR = {
    NotificationType.INFO: "blue",
    NotificationType.SUCCESS: "green",
    NotificationType.WARNING: "yellow",
    NotificationType.ERROR: "red",
}


class ConsoleNotifier:
    """Prints toasts to the terminal."""

    def notify(self, title: str, message: str, type: NotificationType = NotificationType.ERROR) -> None:
        color = _TOAST_COLOR.get(NotificationType(type), "white")
        console.print(f"[{color}]■ {title}[/{color}] {message}")


def _parse_vars(pairs: Optional[list[str]]) -> dict[str, Any]:
    variables: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--var")
        variables[key.strip()] = value
    return variables


def _preview(value: Any, limit: int = 60) -> str:
    text = stringify(value)
    return text if len(text) <= limit else text[: limit - 1] + "…"


def _print_outcome(outcome: RunOutcome) -> None:
    status = outcome.status.value
    color = _STATUS_COLOR.get(status, "white")

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("Node", style="cyan")
    table.add_column("Type", style="dim")
    table.add_column("Iter", width=5, justify="right")
    table.add_column("Status", width=10)
    table.add_column("Detail")

    for i, record in enumerate(outcome.trail, 1):
        result = record.result
        detail = ""
        if result is not None:
            detail = result.error if result.error else _preview(result.data)
        node_color = _STATUS_COLOR.get(record.status.value, "white")
        table.add_row(
            str(i),
            record.display_name,
            record.node_type,
            "" if record.iteration is None else str(record.iteration + 1),
            f"[{node_color}]{record.status.value}[/{node_color}]",
            f"[dim]{detail}[/dim]",
        )

    summary = (
        f"[bold]Run:[/bold] [dim]{outcome.id}[/dim]\n"
        f"[bold]Status:[/bold] [{color}]{status.upper()}[/{color}]  "
        f"[dim]{len(outcome.trail)} node execution(s)[/dim]"
        + (f"\n[bold]Error:[/bold] [red]{outcome.error}[/red]" if outcome.error else "")
    )
    console.print()
    console.print(Panel(summary, title="[bold blue]canvasflow Run Summary[/bold blue]", border_style="blue"))
    if outcome.trail:
        console.print(table)
    else:
        console.print("[dim]No nodes executed.[/dim]")


async def _execute(
    path: str, variables: dict[str, Any], form_values: Optional[list[str]], message: Optional[str]
) -> RunOutcome:
    from canvasflow.callbacks import LoggingCallback
    from canvasflow.engine import WorkflowExecutionService
    from canvasflow.triggers import MessageChannel, Topic
    from canvasflow.workflows import load_workflow

    graph = load_workflow(path)
    channel = MessageChannel()

    async def _answer_form(data: Any) -> None:
        data = data or {}
        console.print(Panel(
            str(data.get("description") or ""), title=f"[bold]{data.get('title', 'Form')}[/bold]"
        ))
        if form_values is not None:
            values = list(form_values)
        else:
            values = []
            for field in data.get("fields") or []:
                label = str(field.get("label") or "value")
                values.append(await asyncio.to_thread(typer.prompt, label, default=""))
        await channel.publish(Topic.FORM_SUBMITTED, {"values": values})

    async def _answer_chat(data: Any) -> None:
        text = message
        if text is None:
            text = await asyncio.to_thread(typer.prompt, "Message")
        console.print(f"[bold]you:[/bold] {text}")
        await channel.publish(Topic.CHAT_MESSAGE, {"text": text})

    def _show_reply(data: Any) -> None:
        text = (data or {}).get("text") if isinstance(data, dict) else data
        if text:
            console.print(f"[bold magenta]assistant:[/bold magenta] {text}")

    channel.subscribe(Topic.FORM_OPEN, _answer_form)
    channel.subscribe(Topic.CHAT_READY, _answer_chat)
    channel.subscribe(Topic.ASSISTANT_RESPONSE, _show_reply)

    service = WorkflowExecutionService(
        graph,
        channel=channel,
        notifier=ConsoleNotifier(),
        callbacks=[LoggingCallback()],
        variables=variables,
    )
    try:
        return await service.execute_workflow()
    finally:
        service.cleanup()
        channel.clear()


def run_workflow(
    path: str = typer.Argument(..., help="Workflow file (.json, .yaml or .yml)"),
    var: Optional[list[str]] = typer.Option(None, "--var", "-V", help="Run variable as key=value"),
    form_value: Optional[list[str]] = typer.Option(
        None, "--form-value", "-f", help="Answer for a Form trigger field, in field order"
    ),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Message for a Chat trigger"),
    as_json: bool = typer.Option(False, "--json", help="Print the run outcome as JSON"),
):
    """Execute a workflow and print the per-node result trail.

    Form and Chat triggers are answered from --form-value / --message, or
    interactively when those are omitted.

    Example:
        canvasflow run flows/signup.yaml -f Ada -f ada@example.com
        canvasflow run flows/support.json -m "my order is late"
    """
    variables = _parse_vars(var)
    try:
        outcome = asyncio.run(_execute(path, variables, form_value, message))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(1)
    except Exception as exc:
        console.print(f"\n[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(outcome.model_dump_json())
    else:
        _print_outcome(outcome)

    if outcome.status in (RunStatus.FAILED, RunStatus.PARTIAL):
        raise typer.Exit(1)
