"""Command-line interface for planwright.

Usage example:
    pw --help
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from planwright.config import config_to_dict, default_config, load_config
from planwright.file_index import list_project_paths
from planwright.mentions import MentionKind, candidates_from_paths, filter_candidates
from planwright.prompt import build_payload
from planwright.state import config_path, ensure_base_layout, log_path, write_json

error_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print a consistently styled error message to stderr."""
    error_console.print(f"[bold red]Error:[/bold red] {message}")


app = typer.Typer(
    name="pw",
    help="Plan iteration panel.",
    add_completion=False,
)


def load_config_or_exit(base: Path):
    try:
        return load_config(base)
    except ValueError as exc:
        print_error(f"invalid config: {exc}")
        raise typer.Exit(code=1) from None


@app.command(help="Initialize .pw/ directory structure.")
def init(
    no_gitignore: Annotated[bool, typer.Option("--no-gitignore", help="Skip .gitignore creation.")] = False,
) -> None:
    """Create .pw/ with a default config.json.

    Idempotent: creates missing pieces, skips existing.
    """
    base = Path.cwd()
    paths = ensure_base_layout(base, create_gitignore=not no_gitignore)

    if not config_path(base).exists():
        write_json(config_path(base), config_to_dict(default_config()))

    typer.echo(f"Initialized {paths['state_root']}")


@app.command(help="Open the plan panel TUI.")
def plan(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Write debug logs to .pw/planwright.log.")] = False,
) -> None:
    """Open the interactive plan panel in the current project."""
    from planwright.tui import require_textual

    require_textual()

    base = Path.cwd()
    cfg = load_config_or_exit(base)

    if verbose:
        ensure_base_layout(base)
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            filename=log_path(base),
        )

    from planwright.tui.app import PlanApp

    app_instance = PlanApp(base=base, config=cfg)
    app_instance.run()


@app.command(help="List mention candidates for a query.")
def files(
    query: Annotated[str, typer.Argument(help="Text typed after @.")] = "",
    folders: Annotated[bool, typer.Option("--folders", help="Only folders (as after 'Add folder').")] = False,
) -> None:
    """Print the mention menu the panel would show for ``@QUERY``."""
    base = Path.cwd()
    cfg = load_config_or_exit(base)

    paths = list_project_paths(base, cfg.index.max_entries, cfg.index.ignore)
    narrowed = MentionKind.FOLDER if folders else None
    options = filter_candidates(query, narrowed, candidates_from_paths(paths))

    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Kind", style="dim")
    table.add_column("Entry")
    for option in options:
        table.add_row(option.kind.value, option.label())
    Console().print(table)


config_app = typer.Typer(name="config", help="View configuration.")
app.add_typer(config_app, name="config")


@config_app.command("show", help="Print the effective configuration.")
def config_show() -> None:
    """Print the merged config (defaults + user overrides) as JSON."""
    base = Path.cwd()
    cfg = load_config_or_exit(base)
    Console().print_json(json.dumps(config_to_dict(cfg), indent=2))


@app.command(help="Print the generatePlan payload for a draft.")
def prompt(
    draft: Annotated[str, typer.Argument(help="Plan draft text.")],
) -> None:
    """Show the outbound request a fresh session would send for DRAFT."""
    payload = build_payload([], draft, is_initial_plan=True)
    if payload is None:
        print_error("Draft is empty.")
        raise typer.Exit(code=1)
    Console().print_json(json.dumps(payload.to_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
