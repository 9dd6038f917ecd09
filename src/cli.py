"""Click CLI for running the relay and managing the persisted selection."""

from __future__ import annotations

import json
import logging
import os

import click
import uvicorn

from src.selection.repository import ConfigRepository
from src.selection.store import SelectionStore


@click.group()
@click.option(
    "--config",
    "config_path",
    default=lambda: os.environ.get("CONFIG_PATH", "config.json"),
    help="Path to the relay config JSON.",
)
@click.option(
    "--log-level",
    default=lambda: os.environ.get("LOG_LEVEL", "INFO"),
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str, log_level: str) -> None:
    """WhatsApp to Slack relay."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, log_level.upper()),
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _store(ctx: click.Context) -> SelectionStore:
    return SelectionStore(ConfigRepository(ctx.obj["config_path"]))


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind.")
@click.option("--port", type=int, default=None, help="Port (defaults to serverPort from config).")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int | None) -> None:
    """Run the HTTP/realtime server and start the WhatsApp session."""
    os.environ["CONFIG_PATH"] = ctx.obj["config_path"]
    if port is None:
        port = _store(ctx).server_port
    click.echo(f"Relay listening on {host}:{port}", err=True)
    uvicorn.run(
        "src.server.app:create_app_from_env",
        factory=True,
        host=host,
        port=port,
        log_config=None,
    )


@cli.group("selection")
def selection_group() -> None:
    """Inspect or edit the selected chats."""


@selection_group.command("list")
@click.pass_context
def selection_list(ctx: click.Context) -> None:
    """List selected chat ids."""
    selected = _store(ctx).all()
    click.echo(json.dumps({"selectedChats": selected, "count": len(selected)}, indent=2))


@selection_group.command("add")
@click.argument("chat_id")
@click.pass_context
def selection_add(ctx: click.Context, chat_id: str) -> None:
    """Select a chat for relaying."""
    _store(ctx).add(chat_id)
    click.echo(f"Chat selected: {chat_id}")


@selection_group.command("remove")
@click.argument("chat_id")
@click.pass_context
def selection_remove(ctx: click.Context, chat_id: str) -> None:
    """Stop relaying a chat."""
    _store(ctx).remove(chat_id)
    click.echo(f"Chat deselected: {chat_id}")


@cli.command("set-webhook")
@click.argument("url")
@click.pass_context
def set_webhook(ctx: click.Context, url: str) -> None:
    """Set the Slack incoming webhook URL."""
    _store(ctx).set_endpoint(url)
    click.echo("Slack webhook updated")


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration (webhook URL redacted)."""
    store = _store(ctx)
    click.echo(json.dumps({
        "selectedChatsCount": len(store),
        "serverPort": store.server_port,
        "hasSlackWebhook": bool(store.get_endpoint()),
        "lastUpdated": store.last_updated,
    }, indent=2))


if __name__ == "__main__":
    cli()
