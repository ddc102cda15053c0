"""
atme CLI — `atme` command.

Commands:
  atme auth login|status|logout     Saved credentials
  atme chat <conversation>          Live conversation (/image <path>, /quit)
  atme send <conversation> <text>   One-shot message
  atme history <conversation>       Recent messages without subscribing
  atme users search <term>          Username prefix search

Settings live in ~/.atme/config.json (access_token, user_id, username,
base_url, storage_url, gateway_url, fcm_server_key).
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install atme-sdk[cli]")

from atme.client import AsyncAtMe

console = Console()
CONFIG_FILE = Path.home() / ".atme" / "config.json"
CLIENT_SETTINGS = ("base_url", "storage_url", "gateway_url", "fcm_server_key")


def _load_config() -> dict:
    try:
        return json.loads(CONFIG_FILE.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def _save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps({k: v for k, v in cfg.items() if v is not None}, indent=2))


def _client_kwargs(cfg: dict) -> dict[str, Any]:
    """Constructor arguments for AsyncAtMe from saved settings."""
    kwargs: dict[str, Any] = {"access_token": cfg.get("access_token"), "user_id": cfg.get("user_id")}
    kwargs.update({key: cfg[key] for key in CLIENT_SETTINGS if cfg.get(key)})
    return kwargs


def _get_client() -> AsyncAtMe:
    cfg = _load_config()
    if not cfg.get("access_token") or not cfg.get("user_id"):
        console.print("[red]Not logged in. Run `atme auth login` first.[/red]")
        raise SystemExit(1)
    return AsyncAtMe(**_client_kwargs(cfg))


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Show SDK log output")
def main(verbose: bool):
    """@Me CLI — chat from the terminal."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


from atme.cli.auth import auth
from atme.cli.chat import chat_cmd, history_cmd, send_cmd
from atme.cli.users import users

main.add_command(auth)
main.add_command(chat_cmd)
main.add_command(send_cmd)
main.add_command(history_cmd)
main.add_command(users)


if __name__ == "__main__":
    main()
