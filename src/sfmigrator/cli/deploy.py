"""
sfmigrator deploy - Retrieve metadata from the source org and deploy it to the target org.
"""

from pathlib import Path

import typer
from rich.table import Table

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
from sfmigrator.exceptions import MigratorError, ValidationError, describe_error
from sfmigrator.pipelines.deployment import DeploymentPipeline, DeploymentPlan, SelectionKey, build_plan
from sfmigrator.services import OrgService
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.cli.deploy")

app = typer.Typer(
    name="deploy",
    help="Migrate metadata between orgs",
    invoke_without_command=True,
    context_settings={"allow_interspersed_args": True},
)


def parse_items(items: list[str]) -> dict[SelectionKey, list[str]]:
    """
    Group ``Type:Name`` / ``Type/Folder:Name`` arguments by selection key.

    Raises:
        ValidationError: an argument without a type or a name
    """
    selection: dict[SelectionKey, list[str]] = {}
    for text in items:
        key_text, sep, name = text.partition(":")
        if not sep or not key_text or not name:
            raise ValidationError(f"Invalid item {text!r}; expected Type:Name or Type/Folder:Name")
        selection.setdefault(SelectionKey.parse(key_text), []).append(name)
    return selection


def print_plan(plan: DeploymentPlan) -> None:
    table = Table(title=f"Deployment plan ({len(plan)} steps)", show_header=True)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Org", style="green")
    table.add_column("Components")
    for index, step in enumerate(plan, start=1):
        table.add_row(str(index), step.kind.value, step.environment.value, "\n".join(step.targets))
    console.print(table)


@app.callback()
def deploy(
    ctx: typer.Context,
    items: list[str] = typer.Argument(..., help="Components as Type:Name or Type/Folder:Name"),
    source: str | None = typer.Option(None, "--source", "-s", help="Source org alias"),
    target: str | None = typer.Option(None, "--target", "-t", help="Target org alias"),
    retrieve_only: bool = typer.Option(False, "--retrieve-only", help="Only retrieve into the local workspace"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan without running it"),
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Build a folder-aware plan and run it step by step. Folders are migrated
    before the items inside them. A failing step stops the run; completed
    steps are not rolled back.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)

    try:
        plan = build_plan(parse_items(items), retrieve_only=retrieve_only)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {describe_error(e)}")
        raise typer.Exit(1) from e

    if dry_run:
        print_plan(plan)
        return

    source_org = require_org(source, settings.source_org, "source")
    target_org = require_org(target, settings.target_org, "target")
    runner = build_runner(settings)

    async def run(token):
        target_instance_url = None
        if not plan.retrieve_only:
            try:
                context = await OrgService(runner, cli=settings.cli_executable).get_context(target_org, token)
                target_instance_url = context.instance_url
            except MigratorError as e:
                logger.warning(f"Could not resolve {target_org}; deploy report links disabled: {describe_error(e)}")

        with console.status("Deploying...") as status:
            pipeline = DeploymentPipeline(
                runner,
                source_org=source_org,
                target_org=target_org,
                cli=settings.cli_executable,
                target_instance_url=target_instance_url,
                notifier=RichNotifier(),
                progress=StatusProgress(status),
            )
            return await pipeline.run(plan, token)

    result = run_cancellable_command(run)
    exit_for(result.status)
