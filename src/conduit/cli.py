"""CLI for conduit: validate and run workflows, sync provider accounts."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import click

from conduit import __version__
from conduit.config import ConduitConfig, ConfigError, load_account_config, load_config
from conduit.core.logging import configure_logging
from conduit.db import Database
from conduit.providers import gateway
from conduit.providers.errors import ProviderError
from conduit.providers.models import CalendarAccountConfig, EmailAccountConfig, TokenPair
from conduit.storage.memory import InMemoryStore
from conduit.storage.postgres import PostgresStore
from conduit.workflows.errors import WorkflowDefinitionError
from conduit.workflows.models import EntityType
from conduit.workflows.service import WorkflowService, parse_workflow

logger = logging.getLogger(__name__)


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Invalid JSON in {path}: {exc}") from exc


def _parse_data(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--data") from exc
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--data")
    return data


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _report_refresh(tokens: TokenPair) -> None:
    click.echo(
        "Access token was refreshed; update the account file before the next sync.",
        err=True,
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to conduit.toml (or a directory containing it)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Conduit: workflow automation and calendar/email provider sync."""
    try:
        config = load_config(config_path) if config_path else ConduitConfig.from_env()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        service_name=config.name,
    )
    ctx.obj = config


@cli.command()
@click.argument("workflow_json", type=click.Path(exists=True, path_type=Path))
def validate(workflow_json: Path) -> None:
    """Validate a workflow definition file."""
    try:
        workflow = parse_workflow(_load_json(workflow_json))
    except WorkflowDefinitionError as exc:
        click.echo(str(exc))
        sys.exit(1)
    click.echo(
        f"OK: {workflow.name} ({workflow.trigger.type}, {len(workflow.actions)} action(s))"
    )


@cli.command()
@click.argument("workflow_json", type=click.Path(exists=True, path_type=Path))
@click.option("--data", "data", default=None, help="Trigger data as a JSON object")
@click.pass_obj
def run(config: ConduitConfig, workflow_json: Path, data: str | None) -> None:
    """Execute a workflow once against an in-memory record store."""
    try:
        workflow = parse_workflow(_load_json(workflow_json))
    except WorkflowDefinitionError as exc:
        click.echo(str(exc))
        sys.exit(1)
    result = asyncio.run(_run_workflow(config, workflow.to_document(), _parse_data(data)))
    _echo_json(result)
    if not result["result"]["success"]:
        sys.exit(1)


async def _run_workflow(
    config: ConduitConfig, document: dict[str, Any], trigger_data: dict[str, Any]
) -> dict[str, Any]:
    store = InMemoryStore()
    service = WorkflowService(
        store,
        store,
        http_timeout_seconds=config.engine.http_timeout_seconds,
        max_delay_seconds=config.engine.max_delay_seconds,
    )
    try:
        workflow = await service.create_workflow(document)
        await service.toggle_workflow(workflow.id)
        result = await service.execute_workflow(workflow.id, trigger_data)
        execution = (
            await store.get_execution(result.execution_id) if result.execution_id else None
        )
        records = {
            str(entity_type): await store.list_records(entity_type)
            for entity_type in EntityType
        }
    finally:
        await service.aclose()
    return {
        "result": result.to_dict(),
        "execution": execution.to_dict() if execution else None,
        "records": {kind: rows for kind, rows in records.items() if rows},
    }


@cli.command("sync-calendar")
@click.argument("account_toml", type=click.Path(exists=True, path_type=Path))
@click.option("--start", type=click.DateTime(), default=None, help="Window start (default: now)")
@click.option("--end", type=click.DateTime(), default=None, help="Window end (default: +30 days)")
@click.option("--limit", type=int, default=250, show_default=True, help="Page size")
@click.pass_obj
def sync_calendar(
    config: ConduitConfig,
    account_toml: Path,
    start: datetime | None,
    end: datetime | None,
    limit: int,
) -> None:
    """Print every event of a calendar account in the window as JSON."""
    account = _load_account(account_toml, CalendarAccountConfig)
    window_start = _aware(start) if start else datetime.now(UTC)
    window_end = _aware(end) if end else window_start + timedelta(days=30)
    events = asyncio.run(
        _collect(
            gateway.iter_calendar_events(
                account,
                window_start,
                window_end,
                limit=limit,
                on_tokens_refreshed=_report_refresh,
                settings=config.provider_settings(),
            )
        )
    )
    _echo_json([event.model_dump(mode="json") for event in events])


@cli.command("sync-email")
@click.argument("account_toml", type=click.Path(exists=True, path_type=Path))
@click.option("--cursor", default=None, help="Continue from a previous sync cursor")
@click.option("--limit", type=int, default=50, show_default=True, help="Page size")
@click.pass_obj
def sync_email(config: ConduitConfig, account_toml: Path, cursor: str | None, limit: int) -> None:
    """Print one page of messages of an email account as JSON."""
    account = _load_account(account_toml, EmailAccountConfig)
    try:
        page = asyncio.run(
            gateway.sync_email_account(
                account,
                cursor,
                limit,
                on_tokens_refreshed=_report_refresh,
                settings=config.provider_settings(),
            )
        )
    except ProviderError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(page.model_dump(mode="json"))


@cli.command("init-db")
@click.pass_obj
def init_db(config: ConduitConfig) -> None:
    """Create the conduit database and tables if they do not exist."""
    db = Database.from_params(config.database) if config.database else Database.from_env()
    asyncio.run(_init_db(db))
    click.echo(f"Schema ready in database {db.db_name}")


async def _init_db(db: Database) -> None:
    await db.provision()
    await db.connect()
    try:
        await PostgresStore(db).ensure_schema()
    finally:
        await db.close()


def _load_account(path: Path, expected: type) -> Any:
    try:
        account = load_account_config(path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    if not isinstance(account, expected):
        raise click.ClickException(f"{path} does not describe a {expected.__name__}")
    return account


async def _collect(iterator: Any) -> list[Any]:
    try:
        return [item async for item in iterator]
    except ProviderError as exc:
        raise click.ClickException(str(exc)) from exc
