"""CLI: atme users search"""

import json

import click
from rich.console import Console
from rich.table import Table

from atme.constants import RESULTS_COUNT

console = Console()


def _main():
    from atme.cli import main
    return main


@click.group()
def users():
    """User directory."""


@users.command("search")
@click.argument("term")
@click.option("--limit", default=RESULTS_COUNT, type=int)
@click.option("--json-output", "--json", is_flag=True)
def users_search(term, limit, json_output):
    """Find users whose username starts with TERM."""
    cli = _main()

    async def _search():
        client = cli._get_client()
        await client.connect()
        try:
            found = await client.directory.search(
                term, exclude_username=cli._load_config().get("username"), limit=limit,
            )
            profiles = await client.directory.find_details(found)
        finally:
            await client.disconnect()
        if json_output:
            click.echo(json.dumps([p.model_dump() for p in profiles], indent=2))
            return
        table = Table(title=f"Users matching {term!r}")
        table.add_column("Username", style="bold")
        table.add_column("Name")
        table.add_column("ID", style="dim")
        for p in profiles:
            table.add_row(f"@{p.username}", p.name, p.uid)
        console.print(table)

    cli._run(_search())
