"""
Main CLI entry point.
"""

import typer

from sfmigrator import __version__
from sfmigrator.cli import deploy, describe, export, metadata, orgs, records


def version_callback(value: bool):
    if value:
        typer.echo(f"sfmigrator version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="sfmigrator",
    help="sfmigrator - Migrate metadata and records between Salesforce orgs",
    add_completion=True,
)

# Discovery commands first, then the ones that move data
app.add_typer(orgs.app, name="orgs")
app.add_typer(metadata.app, name="metadata")
app.add_typer(describe.app, name="describe")
app.add_typer(export.app, name="export")
app.add_typer(records.app, name="import")
app.add_typer(deploy.app, name="deploy")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    sfmigrator - Migrate metadata and records between Salesforce orgs.

    Run 'sfmigrator <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    app(prog_name="sfmigrator")


if __name__ == "__main__":
    main()
