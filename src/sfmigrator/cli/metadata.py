"""
sfmigrator metadata - Browse metadata types, folders and members of an org.
"""

from pathlib import Path

import typer
from rich.table import Table

from sfmigrator.cli.common import bootstrap, build_runner, console, require_org, run_cancellable_command
from sfmigrator.pipelines.deployment import FOLDER_TYPES
from sfmigrator.services import MetadataService

app = typer.Typer(
    name="metadata",
    help="Browse metadata in an org",
    invoke_without_command=True,
    context_settings={"allow_interspersed_args": True},
)


@app.callback()
def metadata(
    ctx: typer.Context,
    metadata_type: str | None = typer.Argument(None, help="Metadata type (default: list all types)"),
    folder: str | None = typer.Option(None, "--folder", "-f", help="Folder of a folder-scoped type"),
    org: str | None = typer.Option(None, "--org", "-o", help="Org alias (default: configured source org)"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Without a type, list metadata types. For a folder-scoped type without
    --folder, list its folders. Otherwise list the members.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)
    alias = require_org(org, settings.source_org, "source")
    service = MetadataService(build_runner(settings), cli=settings.cli_executable)

    if metadata_type is None:
        types = run_cancellable_command(lambda token: service.list_metadata_types(alias, token))
        table = Table(title=f"Metadata types in {alias} ({len(types)})", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Directory", style="dim")
        table.add_column("In folder", style="yellow")
        for entry in types:
            table.add_row(entry.xml_name, entry.directory_name or "-", "yes" if entry.in_folder else "")
        console.print(table)
        return

    if metadata_type in FOLDER_TYPES and folder is None:
        names = run_cancellable_command(lambda token: service.list_folders(alias, metadata_type, token))
        title = f"{FOLDER_TYPES[metadata_type]} folders in {alias}"
    else:
        names = run_cancellable_command(lambda token: service.list_members(alias, metadata_type, folder, token))
        title = f"{metadata_type}{'/' + folder if folder else ''} in {alias}"

    if not names:
        console.print(f"[yellow]Nothing found for {title}[/yellow]")
        return
    console.print(f"\n[bold]{title}[/bold] ({len(names)})")
    for name in names:
        console.print(f"  {name}")
