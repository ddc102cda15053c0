"""CLI: atme chat, atme send, atme history"""

import asyncio
import json
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console

from atme.constants import DEFAULT_WINDOW_SIZE
from atme.errors import AtMeError
from atme.models.message import Message

console = Console()

IMAGE_COMMAND = "/image "
QUIT_COMMANDS = ("/quit", "/exit")


def _main():
    from atme.cli import main
    return main


def _render(message: Message, own_uid: str) -> None:
    when = datetime.fromtimestamp((message.timestamp or 0) / 1000).strftime("%H:%M")
    who = "[cyan]You[/cyan]" if message.sender == own_uid else f"[green]{message.sender}[/green]"
    if message.is_attachment:
        body = f"[magenta]<picture {message.attachment_ref}>[/magenta]"
    else:
        body = message.text
    console.print(f"[dim]{when}[/dim] {who}: {body}")


@click.command("chat")
@click.argument("conversation_id")
@click.option("--window", default=DEFAULT_WINDOW_SIZE, type=int, help="Recent messages shown on open")
def chat_cmd(conversation_id: str, window: int):
    """Live conversation. `/image <path>` sends a picture, `/quit` leaves."""
    cli = _main()

    async def _chat():
        client = cli._get_client()
        await client.connect()
        try:
            identity = await client.establish_identity()
            session = await client.open_conversation(conversation_id, identity, window_size=window)
            session.add_listener(lambda m: _render(m, identity.uid))
            console.print(f"[cyan]Joined {conversation_id} as @{identity.username}. Ctrl+C to leave.[/cyan]\n")
            while True:
                line = await asyncio.to_thread(click.prompt, "", prompt_suffix="", default="", show_default=False)
                if line.strip().lower() in QUIT_COMMANDS:
                    break
                if not line.strip():
                    continue
                try:
                    if line.startswith(IMAGE_COMMAND):
                        data = Path(line[len(IMAGE_COMMAND):].strip()).expanduser().read_bytes()
                        await session.send_attachment(data, client.storage)
                    else:
                        await session.send(text=line)
                except (AtMeError, OSError) as e:
                    console.print(f"[red]Not sent: {e}[/red]")
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            await client.disconnect()

    cli._run(_chat())


@click.command("send")
@click.argument("conversation_id")
@click.argument("message")
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(conversation_id: str, message: str, json_output: bool):
    """Send one message without loading history."""
    cli = _main()

    async def _send() -> Message:
        client = cli._get_client()
        await client.connect()
        try:
            identity = await client.establish_identity()
            session = await client.open_conversation(conversation_id, identity, window_size=0)
            return await session.send(text=message)
        finally:
            await client.disconnect()

    try:
        sent = cli._run(_send())
    except AtMeError as e:
        console.print(f"[red]Not sent: {e}[/red]")
        raise SystemExit(1)
    if json_output:
        click.echo(json.dumps(sent.model_dump(by_alias=True, exclude_none=True)))
    else:
        console.print(f"[green]Sent[/green] [dim]{sent.id}[/dim]")


@click.command("history")
@click.argument("conversation_id")
@click.option("--limit", default=DEFAULT_WINDOW_SIZE, type=int)
def history_cmd(conversation_id: str, limit: int):
    """Print the most recent messages of a conversation."""
    cli = _main()
    own_uid = cli._load_config().get("user_id", "")

    async def _history() -> list[Message]:
        client = cli._get_client()
        await client.connect()
        try:
            return await client.log.history(conversation_id, limit)
        finally:
            await client.disconnect()

    for message in cli._run(_history()):
        _render(message, own_uid)
