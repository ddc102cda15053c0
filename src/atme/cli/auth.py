"""CLI: atme auth login|status|logout"""

from typing import Optional

import click
from rich.console import Console

from atme.client import AsyncAtMe
from atme.errors import AtMeError

console = Console()


def _main():
    from atme.cli import main
    return main


@click.group()
def auth():
    """Saved credentials."""


@auth.command("login")
@click.option("--base-url", default=None, help="Realtime database URL")
@click.option("--storage-url", default=None, help="Object storage URL")
@click.option("--gateway-url", default=None, help="Socket.IO gateway URL")
def auth_login(base_url: Optional[str], storage_url: Optional[str], gateway_url: Optional[str]):
    """Store an access token after checking that its profile is complete."""
    cli = _main()
    cfg = cli._load_config()
    user_id = click.prompt("User ID", default=cfg.get("user_id") or None)
    token = click.prompt("Access token", hide_input=True)
    candidate = {
        **cfg,
        "access_token": token,
        "user_id": user_id,
        "base_url": base_url or cfg.get("base_url"),
        "storage_url": storage_url or cfg.get("storage_url"),
        "gateway_url": gateway_url or cfg.get("gateway_url"),
    }

    async def _verify():
        client = AsyncAtMe(**cli._client_kwargs(candidate))
        try:
            await client.connect()
            return await client.establish_identity()
        finally:
            await client.disconnect()

    try:
        with console.status("Checking profile..."):
            identity = cli._run(_verify())
    except AtMeError as e:
        console.print(f"[red]Login failed ({e.code}): {e}[/red]")
        raise SystemExit(1)

    cli._save_config({**candidate, "username": identity.username})
    console.print(f"[green]Logged in as @{identity.username} ({identity.display_name})[/green]")
    console.print(f"[dim]Saved to {cli.CONFIG_FILE}[/dim]")


@auth.command("status")
def auth_status():
    """Show who is logged in."""
    cfg = _main()._load_config()
    if cfg.get("access_token"):
        console.print(f"[green]Logged in[/green] as @{cfg.get('username', 'unknown')} (ID: {cfg.get('user_id')})")
    else:
        console.print("[yellow]Not logged in. Run `atme auth login`.[/yellow]")


@auth.command("logout")
@click.argument("conversation_ids", nargs=-1)
def auth_logout(conversation_ids: tuple[str, ...]):
    """Stop push notifications and forget credentials.

    Pass CONVERSATION_IDS to also clear this device's token from those rosters.
    """
    cli = _main()
    cfg = cli._load_config()
    if cfg.get("access_token") and cfg.get("user_id"):

        async def _sign_out():
            client = cli._get_client()
            try:
                await client.connect()
                identity = await client.establish_identity()
                await client.sign_out(identity, conversation_ids)
            finally:
                await client.disconnect()

        try:
            cli._run(_sign_out())
        except AtMeError as e:
            console.print(f"[yellow]Could not clear notification token: {e}[/yellow]")
    cli._save_config({})
    console.print("[green]Logged out.[/green]")
