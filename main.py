from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from api.app import create_app
from models.email_message import DetailedMessage, MessageFilters, ThreadMessage
from services.auth_service import CredentialProvider, OAuthService, load_client_config
from services.errors import TriageError
from services.ledger import open_ledgers
from services.triage_service import TriageService
from utils.config import AppConfig, load_config
from utils.headers import split_label_ids
from utils.logger import configure_logging


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    triage: TriageService
    oauth: OAuthService
    console: Console


def build_context(env_file: str) -> AppContext:
    config = load_config(env_file)
    configure_logging(config.log_dir, config.log_level)
    client_config = load_client_config(config)

    classifications, users = open_ledgers(config)
    triage = TriageService(
        classifications,
        users,
        CredentialProvider(client_config, users),
        max_emails=config.max_emails,
    )
    return AppContext(
        config=config,
        triage=triage,
        oauth=OAuthService(client_config),
        console=Console(),
    )


@click.group()
@click.option("--env-file", default=".env", show_default=True, help="Path to the .env file")
@click.pass_context
def cli(ctx: click.Context, env_file: str) -> None:
    """Command-line interface for the inbox triage service."""

    try:
        ctx.obj = build_context(env_file)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("serve")
@click.option("--host", default=None, help="Interface to bind (defaults to HOST)")
@click.option("--port", type=int, default=None, help="Port to bind (defaults to PORT)")
@click.pass_obj
def serve(app: AppContext, host: str | None, port: int | None) -> None:
    """Run the HTTP API."""

    http_app = create_app(app.config, app.triage, app.oauth)
    bind_host = host or app.config.host
    bind_port = port or app.config.port
    LOGGER.info("Inbox triage backend listening on %s:%s", bind_host, bind_port)
    uvicorn.run(http_app, host=bind_host, port=bind_port, log_config=None)


@cli.command("fetch")
@click.option("--user", "user_id", required=True, help="Google user id of a signed-in user")
@click.option("--max-results", type=int, default=None, help="Number of unclassified emails to fetch")
@click.option("--search", default="", help="Gmail search query")
@click.option("--label", "labels", multiple=True, help="Restrict to a Gmail label id (repeatable)")
@click.option("--since", default=None, help="Only messages after this date")
@click.option("--until", default=None, help="Only messages before this date")
@click.pass_obj
def fetch_emails(
    app: AppContext,
    user_id: str,
    max_results: int | None,
    search: str,
    labels: Sequence[str],
    since: str | None,
    until: str | None,
) -> None:
    """Fetch inbox emails the user has not classified yet."""

    filters = MessageFilters(query=search, label_ids=split_label_ids(labels), after=since, before=until)
    emails, requested = _run(app.triage.unclassified_emails(user_id, limit=max_results, filters=filters))
    if emails:
        app.console.print(_build_fetch_table(emails, requested))
    else:
        app.console.print("[bold green]No unclassified emails found.[/bold green]")


@cli.command("thread")
@click.option("--user", "user_id", required=True, help="Google user id of a signed-in user")
@click.argument("thread_id")
@click.pass_obj
def show_thread(app: AppContext, user_id: str, thread_id: str) -> None:
    """Print a conversation in chronological order."""

    messages = _run(app.triage.thread(user_id, thread_id))
    app.console.print(_build_thread_table(thread_id, messages))


@cli.command("classify")
@click.option("--user", "user_id", required=True, help="Google user id of a signed-in user")
@click.argument("message_id")
@click.argument("label", type=click.Choice(["good", "bad"], case_sensitive=False))
@click.option("--subject", default=None, help="Subject to store with the verdict")
@click.pass_obj
def classify(app: AppContext, user_id: str, message_id: str, label: str, subject: Optional[str]) -> None:
    """Record a good/bad verdict for a message."""

    try:
        item = app.triage.classify(user_id, {"id": message_id, "label": label, "subject": subject})
    except TriageError as exc:
        raise click.ClickException(str(exc)) from exc
    app.console.print(f"Marked {item['id']} as [bold]{item['label']}[/bold].")


@cli.command("classifications")
@click.option("--user", "user_id", required=True, help="Google user id of a signed-in user")
@click.option("--label", type=click.Choice(["good", "bad"], case_sensitive=False), default=None)
@click.pass_obj
def list_classifications(app: AppContext, user_id: str, label: str | None) -> None:
    """List recorded verdicts."""

    items = app.triage.classifications.get_classifications(label=label, user=user_id)
    if not items:
        app.console.print("No classifications recorded yet.")
        return

    table = Table(title=f"Classifications for {user_id}")
    table.add_column("ID", overflow="fold")
    table.add_column("Label")
    table.add_column("Subject")
    table.add_column("Updated")
    for item in items:
        table.add_row(item["id"], item["label"], item.get("subject", ""), item.get("updatedAt", ""))
    app.console.print(table)


def main() -> None:
    cli(standalone_mode=True)


def _run(coro):
    try:
        return asyncio.run(coro)
    except TriageError as exc:
        raise click.ClickException(str(exc)) from exc


def _build_fetch_table(emails: Sequence[DetailedMessage], requested: int) -> Table:
    table = Table(title=f"Unclassified emails ({len(emails)}/{requested})", show_lines=False)
    table.add_column("ID", overflow="fold")
    table.add_column("Subject")
    table.add_column("Sender")
    table.add_column("Snippet")
    for email in emails:
        table.add_row(email.id, email.subject, email.sender, email.snippet)
    return table


def _build_thread_table(thread_id: str, messages: Sequence[ThreadMessage]) -> Table:
    table = Table(title=f"Thread {thread_id}")
    table.add_column("Date")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Snippet")
    for message in messages:
        table.add_row(message.date or "-", message.sender, message.subject, message.snippet)
    return table


if __name__ == "__main__":
    main()
