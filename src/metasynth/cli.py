"""CLI interface for Metasynth."""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="metasynth",
    help="Meta-analysis statistics engine for systematic reviews",
)
console = Console()


@app.command()
def operations():
    """List the operations that can be run."""
    from metasynth.tools.registry import get_registry

    table = Table(title="Operations")
    table.add_column("Operation", style="cyan")
    table.add_column("Description")
    table.add_column("Input schema", style="magenta")

    for operation in get_registry():
        table.add_row(operation.name, operation.description, operation.input_schema.__name__)

    console.print(table)


@app.command()
def run(
    operation: str = typer.Argument(..., help="Operation name (see 'metasynth operations')"),
    input_file: str = typer.Argument(..., help="JSON file with the operation's arguments"),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file for results (JSON)"
    ),
    alpha: Optional[float] = typer.Option(
        None, "--alpha", "-a", help="Significance level for confidence intervals"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """
    Run one operation on a JSON input file.

    Analysis defaults come from METASYNTH_* environment variables; --alpha
    overrides the configured significance level for this run.
    """
    from metasynth.config import AnalysisConfig, get_settings
    from metasynth.exceptions import MetaSynthError
    from metasynth.logging import setup_logging
    from metasynth.tools.registry import dispatch

    settings = get_settings()
    setup_logging(level=log_level or settings.log_level, format_style=settings.log_format)

    try:
        with open(input_file) as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error reading {escape(input_file)}: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    if not isinstance(payload, dict):
        console.print("[red]Input file must contain a JSON object[/red]")
        raise typer.Exit(1)

    try:
        config = AnalysisConfig.from_settings(settings).with_overrides(alpha=alpha)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    try:
        result = dispatch(operation, payload, config)
    except MetaSynthError as e:
        console.print(
            Panel.fit(
                f"[bold red]{e.error_type}[/bold red]\n{escape(e.message)}",
                title=f"{operation} failed",
                border_style="red",
            )
        )
        raise typer.Exit(1)

    console.print(
        Panel.fit(
            f"[bold green]{operation}[/bold green] completed "
            f"(alpha = {config.alpha}, {config.confidence_level:.0%} CI)",
            title="Metasynth",
        )
    )
    warnings = result.get("warnings") or []
    if warnings:
        console.print("[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  • {escape(warning)}")

    if output:
        Path(output).write_text(json.dumps(result, indent=2))
        console.print(f"\n[green]Results saved to:[/green] {output}")
    else:
        console.print_json(json.dumps(result))


@app.command()
def version():
    """Show version information."""
    from metasynth import __version__

    console.print(f"Metasynth v{__version__}")


if __name__ == "__main__":
    app()
