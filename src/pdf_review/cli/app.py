"""
Main CLI application for PDF Review.

Provides a Typer-based command-line interface for versioning a reviewed PDF:
open a file, commit its annotations as numbered versions, compare versions,
and switch the working file between them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from ..config import PDFReviewConfig, get_config_manager, load_config
from ..core.document_model import Version
from ..errors import NotFoundError, PDFReviewError
from ..renderer.pdf_renderer import PdfFileRenderer
from ..version.version_control import SwitchStatus, VersionController
from ..version.version_store import VersionStore

SESSION_FILE = "session.json"

# Initialize Typer app
app = typer.Typer(
    name="pdf-review",
    help="Version control for reviewed PDF documents",
    add_completion=False,
    rich_markup_mode="rich"
)

# Global console for rich output
console = Console()

# Global state
workspace_override: Optional[Path] = None


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace directory"),
) -> None:
    """
    Track annotation and text changes of a PDF as numbered versions.
    """
    global workspace_override
    workspace_override = workspace

    config = load_config()
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def get_workspace(config: PDFReviewConfig) -> Path:
    return workspace_override or config.storage.workspace_dir


def get_store(config: PDFReviewConfig) -> VersionStore:
    """Open the version store of the workspace."""
    return VersionStore(storage_path=get_workspace(config))


def read_session(config: PDFReviewConfig) -> Dict[str, Any]:
    """Load the open-document session, exiting if there is none."""
    session_file = get_workspace(config) / SESSION_FILE
    if not session_file.exists():
        console.print("[red]Error: No document is currently open[/red]")
        console.print("Use [cyan]pdf-review open <file>[/cyan] to open a document first.")
        raise typer.Exit(1)
    try:
        return json.loads(session_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error: Could not read session file {session_file}: {e}[/red]")
        raise typer.Exit(1)


def write_session(config: PDFReviewConfig, document_id: str, working_path: Path) -> None:
    workspace = get_workspace(config)
    workspace.mkdir(parents=True, exist_ok=True)
    session = {"document_id": document_id, "working_path": str(working_path)}
    (workspace / SESSION_FILE).write_text(json.dumps(session, indent=2))


def resolve_version(store: VersionStore, document_id: str, ref: str) -> Version:
    """Resolve a version id, a version number, or a ``V<number>`` label."""
    try:
        version = store.get_by_id(ref)
        if version.document_id == document_id:
            return version
    except NotFoundError:
        pass

    number = ref[1:] if ref[:1] in ("v", "V") else ref
    if number.isdigit():
        return store.find_by_number(document_id, int(number))

    console.print(f"[red]Error: Version {ref} not found[/red]")
    raise typer.Exit(1)


async def start_session(config: PDFReviewConfig, session: Dict[str, Any]) -> VersionController:
    """
    Load the session's document and reconcile the working file against
    its current version.
    """
    working_path = Path(session["working_path"])
    if not working_path.exists():
        console.print(f"[red]Error: Working file not found: {working_path}[/red]")
        raise typer.Exit(1)

    store = get_store(config)
    working_content = working_path.read_bytes()
    controller = VersionController(store, renderer=PdfFileRenderer(working_content), config=config)
    await controller.load_document(session["document_id"])
    await controller.reconcile_content(working_content)
    return controller


def format_summary(summary: Dict[str, int]) -> str:
    return f"{summary['create']} created, {summary['update']} updated, {summary['delete']} deleted"


@app.command()
def open(
    file_path: Path = typer.Argument(..., help="Path to the PDF to review"),
) -> None:
    """
    Open a PDF for review.

    Stores the file as version 1 and makes it the working file.
    """
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    if not file_path.suffix.lower() == '.pdf':
        console.print("[red]Error: Only .pdf files are supported[/red]")
        raise typer.Exit(1)

    config = load_config()
    console.print(f"[blue]Opening document: {file_path}[/blue]")

    async def run_open():
        content = file_path.read_bytes()
        controller = VersionController(get_store(config), renderer=PdfFileRenderer(content), config=config)
        try:
            version = await controller.open_document(file_path.name, content)
            return controller.document, version
        finally:
            await controller.close()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Creating initial version...", total=None)
            document, version = asyncio.run(run_open())
    except PDFReviewError as e:
        console.print(f"[red]Error opening document: {e}[/red]")
        raise typer.Exit(1)

    write_session(config, document.id, file_path.resolve())

    info_table = Table(title="Document Information", show_header=False)
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")

    info_table.add_row("File", str(file_path))
    info_table.add_row("Document", document.id)
    info_table.add_row("Version", f"{version.label} ({version.id})")
    info_table.add_row("Pages", str(len(version.page_texts)))
    info_table.add_row("Annotations", str(version.annotation_count))

    console.print(info_table)
    console.print(f"\n[green]Document opened successfully![/green]")
    console.print("Annotate the file, then use [cyan]pdf-review commit -m <message>[/cyan].")


@app.command()
def status() -> None:
    """
    Show the open document, its current version, and unsaved changes.
    """
    config = load_config()
    session = read_session(config)

    async def run_status():
        controller = await start_session(config, session)
        try:
            return controller.document, controller.current_version, controller.change_summary(), controller.pending_count
        finally:
            await controller.close()

    try:
        document, version, summary, pending = asyncio.run(run_status())
    except PDFReviewError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    status_panel = Panel.fit(
        f"""[bold cyan]Current Document Status[/bold cyan]

[bold]Document:[/bold] {document.name} ({document.id})
[bold]Working File:[/bold] {session['working_path']}
[bold]Current Version:[/bold] {version.label} - {version.message}
[bold]Annotations:[/bold] {version.annotation_count}
[bold]Unsaved Changes:[/bold] {pending} ({format_summary(summary)})""",
        title="Document Status",
        border_style="blue"
    )

    console.print(status_panel)


@app.command()
def commit(
    message: str = typer.Option(..., "--message", "-m", help="Commit message"),
) -> None:
    """
    Commit the working file as a new version.
    """
    if not message.strip():
        console.print("[red]Error: Commit message must not be empty[/red]")
        raise typer.Exit(1)

    config = load_config()
    session = read_session(config)

    async def run_commit():
        controller = await start_session(config, session)
        try:
            summary = controller.change_summary()
            version = await controller.commit(message)
            return version, summary
        finally:
            await controller.close()

    try:
        version, summary = asyncio.run(run_commit())
    except PDFReviewError as e:
        console.print(f"[red]Error committing: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Committed {version.label} ({version.id})[/green]")
    console.print(f"Annotation changes: {format_summary(summary)}")


@app.command()
def history() -> None:
    """
    Show document version history.
    """
    config = load_config()
    session = read_session(config)

    store = get_store(config)
    try:
        document = store.get_document(session["document_id"])
    except PDFReviewError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    versions = store.list_by_document(document.id)
    if not versions:
        console.print("[yellow]No version history available[/yellow]")
        return

    history_table = Table(title=f"Document History ({document.name})")
    history_table.add_column("Version", style="cyan")
    history_table.add_column("ID", style="magenta")
    history_table.add_column("Message", style="white")
    history_table.add_column("Date", style="blue")
    history_table.add_column("Annotations", style="green")

    for version in reversed(versions):
        marker = "→ " if version.id == document.current_version_id else "  "
        history_table.add_row(
            f"{marker}{version.label}",
            version.id,
            version.message,
            version.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(version.annotation_count),
        )

    console.print(history_table)


@app.command()
def diff(
    version1: str = typer.Argument(..., help="Base version (id or number)"),
    version2: str = typer.Argument(..., help="Version to compare against the base"),
    output_format: str = typer.Option("text", "--format", "-f", help="Output format: text, json"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Save diff to file"),
) -> None:
    """
    Show differences between two document versions.
    """
    if output_format not in ("text", "json"):
        console.print(f"[red]Error: Unknown format {output_format}[/red]")
        raise typer.Exit(1)

    config = load_config()
    session = read_session(config)
    store = get_store(config)

    try:
        base = resolve_version(store, session["document_id"], version1)
        compare = resolve_version(store, session["document_id"], version2)
        controller = VersionController(store, config=config)
        report = asyncio.run(controller.compare(base.id, compare.id))
    except PDFReviewError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    diff_engine = controller.diff_engine

    # Format output
    if output_format == "text":
        diff_text = diff_engine.generate_text_diff(report, base.label, compare.label)

        if output_file:
            output_file.write_text(diff_text)
            console.print(f"[green]Diff saved to {output_file}[/green]")
        else:
            if diff_text.strip():
                console.print(Panel(
                    Syntax(diff_text, "diff", theme="monokai"),
                    title=f"Diff: {base.label} → {compare.label}",
                    border_style="blue"
                ))
            else:
                console.print("[yellow]No differences found[/yellow]")

    elif output_format == "json":
        json_diff = json.dumps(report.to_dict(), indent=2)

        if output_file:
            output_file.write_text(json_diff)
            console.print(f"[green]JSON diff saved to {output_file}[/green]")
        else:
            console.print_json(json_diff)

    # Show summary
    summary = diff_engine.summarize_changes(report)

    summary_panel = Panel.fit(
        f"""[bold]{summary['overview']}[/bold]

[bold cyan]Text Changes:[/bold cyan]
{chr(10).join(f"• {change}" for change in summary['text_changes']) or "None"}

[bold yellow]Annotation Changes:[/bold yellow]
{chr(10).join(f"• {change}" for change in summary['annotation_changes']) or "None"}""",
        title="Change Summary",
        border_style="green"
    )

    console.print("\n")
    console.print(summary_panel)


@app.command()
def checkout(
    version_ref: str = typer.Argument(..., help="Version to switch to (id or number)"),
    discard: bool = typer.Option(False, "--discard", help="Discard unsaved changes without asking"),
) -> None:
    """
    Switch the working file to a stored version.
    """
    config = load_config()
    session = read_session(config)
    working_path = Path(session["working_path"])

    async def run_checkout():
        controller = await start_session(config, session)
        try:
            target = resolve_version(controller.store, session["document_id"], version_ref)
            result = await controller.request_switch(target.id)

            if result.status is SwitchStatus.CONFIRMATION_REQUIRED:
                confirmed = discard or typer.confirm(
                    f"{result.pending_count} unsaved changes will be lost. Continue?"
                )
                if not confirmed:
                    controller.cancel_switch()
                    return result
                result = await controller.confirm_switch()

            if result.status is SwitchStatus.SWITCHED:
                working_path.write_bytes(controller.store.get_binary_content(result.version.id))
            return result
        finally:
            await controller.close()

    try:
        result = asyncio.run(run_checkout())
    except PDFReviewError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if result.status is SwitchStatus.UNCHANGED:
        console.print(f"[yellow]Already at {result.version.label}[/yellow]")
    elif result.status is SwitchStatus.CONFIRMATION_REQUIRED:
        console.print("[yellow]Checkout cancelled[/yellow]")
    else:
        console.print(f"[green]Checked out {result.version.label}[/green]")
        console.print(f"Working file: {working_path}")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    create_default: bool = typer.Option(False, "--create-default", help="Create default config file"),
) -> None:
    """
    Manage PDF Review configuration.
    """
    config_manager = get_config_manager()

    if create_default:
        path = config_manager.create_default_config()
        console.print(f"[green]Created default config at {path}[/green]")
        return

    if show:
        config_info = config_manager.get_config_info()
        current_config = load_config()

        config_display = f"""[bold]PDF Review Configuration[/bold]

[bold cyan]Diff Settings:[/bold cyan]
• Per-page Timeout: {current_config.diff.diff_timeout}s
• Edit Cost: {current_config.diff.edit_cost}
• Compute Timeout: {current_config.diff.compute_timeout}

[bold yellow]Renderer Settings:[/bold yellow]
• Call Timeout: {current_config.renderer.call_timeout}

[bold green]Storage:[/bold green]
• Workspace: {current_config.storage.workspace_dir}
• Max Upload: {current_config.storage.max_upload_mb}MB

[bold blue]Features:[/bold blue]"""

        for feature, enabled in current_config.features.items():
            status = "✓" if enabled else "✗"
            config_display += f"\n• {feature.replace('_', ' ').title()}: {status}"

        config_display += f"""

[bold magenta]Files:[/bold magenta]
• Config File: {config_info['config_file']}
• Exists: {'Yes' if config_info['config_exists'] else 'No'}
• Log Level: {config_info['log_level']}"""

        console.print(Panel(config_display, border_style="green"))
        return

    # Default: show basic info
    console.print("Use [cyan]pdf-review config --show[/cyan] to see full configuration")
    console.print("Use [cyan]pdf-review config --create-default[/cyan] to create a default config file")


if __name__ == "__main__":
    app()
