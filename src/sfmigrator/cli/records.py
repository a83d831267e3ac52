"""
sfmigrator import - Load a CSV file into an object through a bulk ingest job.
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
from sfmigrator.pipelines.dml import DmlPipeline
from sfmigrator.services import OrgService

app = typer.Typer(
    name="import",
    help="Import records from CSV",
    invoke_without_command=True,
    context_settings={"allow_interspersed_args": True},
)


@app.callback()
def import_records(
    ctx: typer.Context,
    object_name: str = typer.Argument(..., help="Object API name, e.g. Account"),
    file: Path = typer.Option(..., "--file", "-f", help="CSV file with a header row of field API names"),
    operation: str = typer.Option("insert", "--operation", help="insert, update, upsert, delete or hardDelete"),
    external_id: str | None = typer.Option(None, "--external-id", help="External ID field (required for upsert)"),
    org: str | None = typer.Option(None, "--org", help="Org alias (default: configured target org)"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Run one DML operation from a CSV file. Rejected rows are written next to
    the input as <name>_failed.csv.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)
    alias = require_org(org, settings.target_org, "target")
    orgs = OrgService(build_runner(settings), cli=settings.cli_executable)

    async def run(token):
        context = await orgs.get_context(alias, token)
        async with RemoteApiClient(settings.request_timeout, settings.max_result_pages) as client:
            with console.status(f"Running {operation} on {object_name}...") as status:
                pipeline = DmlPipeline(
                    client,
                    context,
                    workspace_root=settings.workspace_root,
                    poller=JobPoller(policy=settings.poll_policy),
                    notifier=RichNotifier(),
                    progress=StatusProgress(status),
                )
                return await pipeline.run(operation, object_name, file, external_id, token)

    result = run_cancellable_command(run)
    exit_for(result.status)
