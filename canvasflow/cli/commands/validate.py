"""canvasflow validate — Structural check of a workflow file."""

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from canvasflow.exceptions import WorkflowValidationError
from canvasflow.workflows import WorkflowValidator, load_workflow

console = Console()


def validate_workflow(
    path: str = typer.Argument(..., help="Workflow file (.json, .yaml or .yml)"),
):
    """Load a workflow file and report errors and warnings.

    Exits with status 1 when the file cannot be loaded or has hard errors.

    Example:
        canvasflow validate flows/signup.yaml
    """
    try:
        graph = load_workflow(path)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    except WorkflowValidationError as exc:
        console.print(f"[red]Invalid:[/red] {exc}")
        for violation in exc.violations:
            console.print(f"  [dim]-[/dim] {violation}")
        raise typer.Exit(1)

    problems = WorkflowValidator().validate(graph)
    errors = [p for p in problems if not p.startswith("WARNING:")]
    warnings = [p[len("WARNING:"):].strip() for p in problems if p.startswith("WARNING:")]

    if not problems:
        console.print(
            f"[green]✓[/green] {graph.name}: {len(graph.nodes)} node(s), "
            f"{len(graph.connectors)} connector(s), no problems found"
        )
        return

    table = Table(box=box.SIMPLE, header_style="bold dim", title=f"[bold]{graph.name}[/bold]")
    table.add_column("Level", width=9)
    table.add_column("Problem")
    for error in errors:
        table.add_row("[red]error[/red]", error)
    for warning in warnings:
        table.add_row("[yellow]warning[/yellow]", warning)
    console.print(table)

    if errors:
        raise typer.Exit(1)
