"""
sfmigrator describe - Show the fields of an object.
"""

from pathlib import Path

import typer
from rich.table import Table

from sfmigrator.api import RemoteApiClient
from sfmigrator.cli.common import bootstrap, build_runner, console, require_org, run_cancellable_command
from sfmigrator.core.cancellation import run_cancellable
from sfmigrator.services import OrgService

app = typer.Typer(
    name="describe",
    help="Describe the fields of an object",
    invoke_without_command=True,
    context_settings={"allow_interspersed_args": True},
)


@app.callback()
def describe(
    ctx: typer.Context,
    object_name: str = typer.Argument(..., help="Object API name, e.g. Account"),
    org: str | None = typer.Option(None, "--org", "-o", help="Org alias (default: configured source org)"),
    picklists: bool = typer.Option(False, "--picklists", "-p", help="Show picklist values"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    List field API names, labels and types of an object.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)
    alias = require_org(org, settings.source_org, "source")
    orgs = OrgService(build_runner(settings), cli=settings.cli_executable)

    async def fetch(token):
        context = await orgs.get_context(alias, token)
        async with RemoteApiClient(settings.request_timeout, settings.max_result_pages) as client:
            return await run_cancellable(client.describe_object(context, object_name), token)

    fields = run_cancellable_command(fetch)

    table = Table(title=f"{object_name} ({len(fields)} fields)", show_header=True)
    table.add_column("API name", style="cyan")
    table.add_column("Label")
    table.add_column("Type", style="green")
    if picklists:
        table.add_column("Picklist values", style="dim")

    for field in sorted(fields, key=lambda f: f.name):
        row = [field.name, field.label, field.type]
        if picklists:
            row.append(", ".join(value.value for value in field.picklist_values if value.active))
        table.add_row(*row)

    console.print(table)
