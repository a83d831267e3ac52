"""
sfmigrator orgs - List orgs authenticated with the platform CLI.
"""

from pathlib import Path

import typer
from rich.table import Table

from sfmigrator.cli.common import bootstrap, build_runner, console, run_cancellable_command
from sfmigrator.services import OrgService

app = typer.Typer(name="orgs", help="List authenticated orgs", invoke_without_command=True)


@app.callback()
def orgs(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    List the orgs known to the CLI, marking the configured source and target.
    """
    if ctx.invoked_subcommand is not None:
        return

    settings = bootstrap(project_dir, env, verbose)
    service = OrgService(build_runner(settings), cli=settings.cli_executable)
    org_list = run_cancellable_command(service.list_orgs)

    if not org_list:
        console.print("[yellow]No authenticated orgs found[/yellow]")
        return

    table = Table(title=f"Orgs ({len(org_list)})", show_header=True)
    table.add_column("Alias", style="cyan")
    table.add_column("Username", style="green")
    table.add_column("Instance", style="dim")
    table.add_column("Status")
    table.add_column("Role", style="magenta")

    for org in org_list:
        roles = [
            role
            for role, alias in (("source", settings.source_org), ("target", settings.target_org))
            if alias and alias in (org.alias, org.username)
        ]
        table.add_row(
            org.alias or "-", org.username, org.instance_url or "-", org.connected_status or "-", ", ".join(roles)
        )

    console.print(table)
