"""
sfmigrator export - Export the records of an object to CSV through a bulk query job.
"""

from pathlib import Path

import typer

from sfmigrator.api import RemoteApiClient
from sfmigrator.cli.common import (
    RichNotifier,
    StatusProgress,
    bootstrap,
    build_runner,
    console,
    exit_for,
    require_org,
    run_cancellable_command,
)
from sfmigrator.core.poller import JobPoller
from sfmigrator.exceptions import ValidationError, describe_error
from sfmigrator.pipelines.export import ExportPipeline, build_query
from sfmigrator.services import OrgService

app = typer.Typer(
    name="export",
    help="Export records to CSV",
    invoke_without_command=True,
    context_settings={"allow_interspersed_args": True},
)


@app.callback()
def export(
    ctx: typer.Context,
    object_name: str = typer.Argument(..., help="Object API name, e.g. Account"),
    query: str | None = typer.Option(None, "--query", "-q", help="Query to run (must select from the object)"),
    fields: str | None = typer.Option(None, "--fields", help="Comma-separated fields, used when --query is omitted"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Destination CSV (default: exports/<object>.csv)"),
    org: str | None = typer.Option(None, "--org", help="Org alias (default: configured source org)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Keep the file without asking when row counts differ"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Run a bulk query and write its results to a CSV file, then compare the
    row count with a COUNT() pre-check. Ctrl-C aborts the remote job and
    removes the partial file.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)
    alias = require_org(org, settings.source_org, "source")

    try:
        if query is None:
            field_list = [name.strip() for name in (fields or "").split(",") if name.strip()]
            query = build_query(object_name, field_list)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {describe_error(e)}")
        raise typer.Exit(1) from e

    destination = output or settings.exports_path / f"{object_name}.csv"
    orgs = OrgService(build_runner(settings), cli=settings.cli_executable)

    async def run(token):
        context = await orgs.get_context(alias, token)
        async with RemoteApiClient(settings.request_timeout, settings.max_result_pages) as client:
            with console.status(f"Exporting {object_name}...") as status:
                pipeline = ExportPipeline(
                    client,
                    context,
                    object_name,
                    workspace_root=settings.workspace_root,
                    poller=JobPoller(policy=settings.poll_policy),
                    notifier=RichNotifier(assume_yes=yes, status=status),
                    progress=StatusProgress(status),
                )
                return await pipeline.run(query, destination, token)

    result = run_cancellable_command(run)
    exit_for(result.status)
