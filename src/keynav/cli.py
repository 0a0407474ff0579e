"""Command line interface for keynav."""

from __future__ import annotations

import asyncio
import difflib
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, NoReturn, Optional, TypeVar

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from keynav.config import (
    ConfigError,
    ConfigManager,
    KeynavConfig,
    assign_dotted,
    resolve_with_precedence,
)
from keynav.config.logging_setup import configure_logging
from keynav.connection import (
    ConnectionConfig,
    ConnectionConfigBuilder,
    ConnectionFields,
    ConnectionRegistry,
    ConnectionStore,
    decompose,
    describe,
    mask,
)
from keynav.connection.models import CONNECTION_MODES
from keynav.errors import GatewayError, KeynavError, StateError, StorageError, ValidationError
from keynav.gateway.base import ClusterNodeInfo, Message
from keynav.gateway.redis import create_gateway
from keynav.navigator import (
    EmptyDetail,
    HashDetail,
    JsonDetail,
    KeyDetailLoader,
    KeyType,
    ListDetail,
    LoadedKey,
    NamespaceNode,
    NavigatorSession,
    SetDetail,
    StringDetail,
    ZSetDetail,
)
from keynav.navigator.detail import CREATABLE_TYPES, KEY_ABSENT, NO_EXPIRY
from keynav.preferences import JsonPreferencesStore, ViewMode
from keynav.pubsub import SubscriptionManager

console = Console()

T = TypeVar("T")

_ERROR_CODES: tuple[tuple[type[KeynavError], str], ...] = (
    (ValidationError, "validation_error"),
    (StateError, "state_error"),
    (StorageError, "storage_error"),
    (ConfigError, "config_error"),
)

_VIEW_MODES: dict[str, ViewMode] = {"type": "by_type", "namespace": "by_namespace"}


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> NoReturn:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str = "detail", quiet: bool = False) -> None:
    """Print CLI output unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """

    if quiet and mode != "error":
        return
    console.print(message)


def _error_code(exc: KeynavError) -> str:
    if isinstance(exc, GatewayError):
        return exc.code
    for error_type, code in _ERROR_CODES:
        if isinstance(exc, error_type):
            return code
    return "keynav_error"


def _execute(coro: Coroutine[Any, Any, T], *, json_output: bool) -> T:
    """Run ``coro`` to completion, mapping keynav errors onto CLI failures."""
    try:
        return asyncio.run(coro)
    except KeynavError as exc:
        message = exc.message if isinstance(exc, GatewayError) else str(exc)
        _handle_cli_error(message, code=_error_code(exc), json_output=json_output, original=exc)


def _options() -> dict[str, Any]:
    ctx = click.get_current_context()
    return ctx.find_root().obj or {}


def _load_config() -> KeynavConfig:
    manager = ConfigManager()
    try:
        config = manager.load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging, verbose=bool(_options().get("verbose")))
    return config


def _quiet(config: KeynavConfig) -> bool:
    return bool(_options().get("quiet")) or config.cli.quiet_default


def _registry(config: KeynavConfig) -> ConnectionRegistry:
    store = ConnectionStore(Path(config.storage.connections_file))
    return ConnectionRegistry(store, create_gateway, config.gateway)


def _database(config: KeynavConfig, database: Optional[int]) -> int:
    return config.navigator.default_database if database is None else database


def _fields(
    address: str,
    seeds: tuple[str, ...],
    master_name: str,
    sentinels: tuple[str, ...],
    password: str,
) -> ConnectionFields:
    return ConnectionFields(
        address=address,
        seeds="\n".join(seeds),
        master_name=master_name,
        sentinels="\n".join(sentinels),
        password=password,
    )


def _connection_payload(name: str, connection: ConnectionConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": name,
        "mode": connection.mode,
        "addresses": [mask(address) for address in connection.addresses()],
    }
    master_name = getattr(connection, "master_name", None)
    if master_name:
        payload["master_name"] = master_name
    return payload


def _connection_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option(
            "--mode",
            type=click.Choice(CONNECTION_MODES),
            default="standalone",
            show_default=True,
            help="Deployment topology.",
        ),
        click.option("--address", default="", help="Standalone address, e.g. 127.0.0.1:6379."),
        click.option("--seed", "seeds", multiple=True, help="Cluster seed address (repeatable)."),
        click.option("--master-name", default="", help="Sentinel master name."),
        click.option(
            "--sentinel", "sentinels", multiple=True, help="Sentinel address (repeatable)."
        ),
        click.option(
            "--password",
            default="",
            envvar="KEYNAV_PASSWORD",
            help="Shared password embedded into every address.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


_db_option = click.option(
    "--db", "database", type=click.IntRange(min=0), default=None, help="Database index."
)
_json_option = click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")


# Detail rendering -----------------------------------------------------


def _detail_value(loaded: LoadedKey) -> Any:
    detail = loaded.detail
    if isinstance(detail, StringDetail):
        return detail.value
    if isinstance(detail, HashDetail):
        return dict(detail.fields)
    if isinstance(detail, ListDetail):
        return list(detail.items)
    if isinstance(detail, SetDetail):
        return sorted(detail.members)
    if isinstance(detail, ZSetDetail):
        return [[member, score] for member, score in detail.members]
    if isinstance(detail, JsonDetail):
        return detail.document
    return None


def _detail_payload(loaded: LoadedKey, ttl: Optional[int]) -> dict[str, Any]:
    return {
        "key": loaded.key,
        "type": loaded.type.value,
        "ttl": ttl,
        "value": _detail_value(loaded),
    }


def _render_detail(loaded: LoadedKey, ttl: Optional[int], max_items: int) -> None:
    ttl_text = "no expiry" if ttl == NO_EXPIRY else "missing" if ttl == KEY_ABSENT else f"{ttl}s"
    console.print(
        f"[bold]{escape(loaded.key)}[/bold]  [cyan]{loaded.type.value}[/cyan]  TTL {ttl_text}"
    )

    detail = loaded.detail
    if isinstance(detail, StringDetail):
        if detail.structured is not None:
            console.print(Syntax(json.dumps(detail.structured, indent=2), "json", word_wrap=True))
        else:
            console.print(detail.value, markup=False, highlight=False)
        return
    if isinstance(detail, JsonDetail):
        console.print(Syntax(json.dumps(detail.document, indent=2), "json", word_wrap=True))
        return
    if isinstance(detail, EmptyDetail):
        console.print("[dim]No browsable value.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    rows: list[tuple[str, ...]]
    if isinstance(detail, HashDetail):
        table.add_column("Field")
        table.add_column("Value")
        rows = [(name, value) for name, value in detail.fields.items()]
    elif isinstance(detail, ListDetail):
        table.add_column("Index", justify="right")
        table.add_column("Value")
        rows = [(str(index), value) for index, value in enumerate(detail.items)]
    elif isinstance(detail, SetDetail):
        table.add_column("Member")
        rows = [(member,) for member in sorted(detail.members)]
    else:
        table.add_column("Member")
        table.add_column("Score", justify="right")
        rows = [(member, f"{score:g}") for member, score in detail.members]

    for row in rows[:max_items]:
        table.add_row(*row)
    console.print(table)
    if len(rows) > max_items:
        console.print(f"[dim]... {len(rows) - max_items} more not shown.[/dim]")


def _tree_payload(node: NamespaceNode) -> dict[str, Any]:
    return {
        "name": node.name,
        "path": node.path,
        "count": node.count,
        "keys": list(node.keys),
        "children": [_tree_payload(child) for child in node.children.values()],
    }


# Key access helpers ---------------------------------------------------


async def _with_key(
    config: KeynavConfig,
    connection: str,
    database: int,
    key: str,
    action: Callable[[KeyDetailLoader], Awaitable[T]],
    *,
    preload: bool = True,
) -> T:
    registry = _registry(config)
    try:
        gateway = await registry.gateway(connection)
        loader = KeyDetailLoader(
            gateway,
            database,
            tick_interval=config.detail.tick_interval_seconds,
            detect_structured=config.detail.detect_structured_strings,
        )
        try:
            if preload:
                await loader.load(key)
            return await action(loader)
        finally:
            await loader.close()
    finally:
        await registry.close_all()


def _apply(
    connection: str,
    key: str,
    database: Optional[int],
    action: Callable[[KeyDetailLoader], Awaitable[Any]],
    *,
    success: Callable[[Any], str],
    json_output: bool,
) -> None:
    """Load ``key``, run a mutation against it and report the outcome."""
    config = _load_config()

    async def _act(loader: KeyDetailLoader) -> tuple[Any, Optional[LoadedKey], Optional[int]]:
        result = await action(loader)
        return result, loader.current, loader.ttl

    result, loaded, ttl = _execute(
        _with_key(config, connection, _database(config, database), key, _act),
        json_output=json_output,
    )
    if json_output:
        payload = _detail_payload(loaded, ttl) if loaded is not None else {"key": key}
        payload["result"] = result
        console.print_json(data=payload)
        return
    _emit_message(f"[green]{escape(success(result))}[/green]", quiet=_quiet(config))


# Root group -----------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="keynav")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """keynav browses and edits Redis key spaces.

    Standalone, cluster and sentinel deployments are supported.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


# Connections ----------------------------------------------------------


@cli.group()
def connections() -> None:
    """Manage saved connections."""


@connections.command("add")
@click.argument("name")
@_connection_options
@_json_option
def connections_add(
    name: str,
    mode: str,
    address: str,
    seeds: tuple[str, ...],
    master_name: str,
    sentinels: tuple[str, ...],
    password: str,
    json_output: bool,
) -> None:
    """Verify and save a connection under NAME."""
    config = _load_config()
    fields = _fields(address, seeds, master_name, sentinels, password)

    async def _run() -> ConnectionConfig:
        connection = ConnectionConfigBuilder().build(mode, fields)
        registry = _registry(config)
        try:
            await registry.add_connection(name, connection)
        finally:
            await registry.close_all()
        return connection

    connection = _execute(_run(), json_output=json_output)
    if json_output:
        console.print_json(data=_connection_payload(name, connection))
        return
    summary = escape(f"{name} ({describe(connection)})")
    _emit_message(f"[green]Saved connection {summary}.[/green]", quiet=_quiet(config))


@connections.command("list")
@_json_option
def connections_list(json_output: bool) -> None:
    """List saved connections."""
    config = _load_config()
    try:
        configs = _registry(config).list_configs()
    except StorageError as exc:
        _handle_cli_error(str(exc), code="storage_error", json_output=json_output, original=exc)

    if json_output:
        console.print_json(
            data={"connections": [_connection_payload(name, cfg) for name, cfg in configs.items()]}
        )
        return
    if not configs:
        _emit_message("[yellow]No saved connections.[/yellow]", quiet=_quiet(config))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Addresses")
    for name, cfg in configs.items():
        table.add_row(name, cfg.mode, "\n".join(mask(address) for address in cfg.addresses()))
    console.print(table)


@connections.command("show")
@click.argument("name")
@_json_option
def connections_show(name: str, json_output: bool) -> None:
    """Show the editable fields of connection NAME (password masked)."""
    config = _load_config()
    try:
        stored = _registry(config).list_configs().get(name)
    except StorageError as exc:
        _handle_cli_error(str(exc), code="storage_error", json_output=json_output, original=exc)
    if stored is None:
        _handle_cli_error(
            f"unknown connection '{name}'", code="validation_error", json_output=json_output
        )

    mode, fields = decompose(stored)
    data = fields.model_dump()
    data["password"] = "***" if fields.password else ""
    if json_output:
        console.print_json(data={"name": name, "mode": mode, "fields": data})
        return
    console.print(f"[bold]{escape(name)}[/bold] ({mode})")
    for field_name, value in data.items():
        if value:
            console.print(f"  {field_name}: {value}", markup=False, highlight=False)


@connections.command("remove")
@click.argument("name")
def connections_remove(name: str) -> None:
    """Remove connection NAME."""
    config = _load_config()

    async def _run() -> bool:
        registry = _registry(config)
        try:
            return await registry.remove_connection(name)
        finally:
            await registry.close_all()

    if _execute(_run(), json_output=False):
        _emit_message(f"[green]Removed connection {escape(name)}.[/green]", quiet=_quiet(config))
    else:
        _emit_message(f"[yellow]No connection named {escape(name)}.[/yellow]", mode="warning")


@connections.command("check")
@click.argument("name")
@_json_option
def connections_check(name: str, json_output: bool) -> None:
    """Ping saved connection NAME."""
    config = _load_config()

    async def _run() -> Any:
        registry = _registry(config)
        try:
            return await registry.check_connection(name)
        finally:
            await registry.close_all()

    health = _execute(_run(), json_output=json_output)
    if not health.ok:
        _handle_cli_error(health.message, code="unreachable", json_output=json_output)
    if json_output:
        console.print_json(data={"name": name, "ok": True, "latency_ms": health.latency_ms})
        return
    _emit_message(
        f"[green]{escape(name)}: ok ({health.latency_ms:.1f} ms)[/green]", quiet=_quiet(config)
    )


@connections.command("test")
@_connection_options
@_json_option
def connections_test(
    mode: str,
    address: str,
    seeds: tuple[str, ...],
    master_name: str,
    sentinels: tuple[str, ...],
    password: str,
    json_output: bool,
) -> None:
    """Check that a connection is reachable without saving it."""
    config = _load_config()
    fields = _fields(address, seeds, master_name, sentinels, password)

    async def _run() -> Any:
        connection = ConnectionConfigBuilder().build(mode, fields)
        return await _registry(config).test_connection_config(connection)

    health = _execute(_run(), json_output=json_output)
    if not health.ok:
        _handle_cli_error(health.message, code="unreachable", json_output=json_output)
    if json_output:
        console.print_json(data={"ok": True, "latency_ms": health.latency_ms})
        return
    _emit_message(f"[green]ok ({health.latency_ms:.1f} ms)[/green]", quiet=_quiet(config))


@connections.command("nodes")
@click.argument("name")
@_json_option
def connections_nodes(name: str, json_output: bool) -> None:
    """Show the cluster topology of connection NAME, masters first."""
    config = _load_config()

    async def _run() -> list[ClusterNodeInfo]:
        registry = _registry(config)
        try:
            gateway = await registry.gateway(name)
            return await gateway.cluster_nodes()
        finally:
            await registry.close_all()

    nodes = _execute(_run(), json_output=json_output)
    if json_output:
        console.print_json(
            data={
                "name": name,
                "nodes": [
                    {
                        "id": node.node_id,
                        "address": node.address,
                        "role": "master" if node.is_master else "replica",
                        "flags": list(node.flags),
                        "master_id": node.master_id,
                        "slots": list(node.slots),
                        "connected": node.connected,
                    }
                    for node in nodes
                ],
            }
        )
        return
    if not nodes:
        _emit_message(f"[yellow]{escape(name)} is not a cluster.[/yellow]", mode="warning")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Id")
    table.add_column("Address")
    table.add_column("Role")
    table.add_column("Slots")
    table.add_column("Link")
    for node in nodes:
        table.add_row(
            node.node_id,
            node.address,
            "master" if node.is_master else f"replica of {node.master_id or '?'}",
            ", ".join(node.slots),
            "connected" if node.connected else "disconnected",
        )
    console.print(table)


# Keys -----------------------------------------------------------------


@cli.group()
def keys() -> None:
    """Create, enumerate, inspect and expire keys."""


@keys.command("scan")
@click.argument("connection")
@_db_option
@click.option("--pattern", default=None, help="MATCH pattern (default: navigator.default_pattern).")
@click.option("--all", "scan_all", is_flag=True, help="Page until enumeration completes.")
@click.option(
    "--pages", type=click.IntRange(min=1), default=1, show_default=True, help="Pages to fetch."
)
@click.option(
    "--view",
    type=click.Choice(sorted(_VIEW_MODES)),
    default=None,
    help="Group by type or namespace; remembered per connection and database.",
)
@_json_option
def keys_scan(
    connection: str,
    database: Optional[int],
    pattern: Optional[str],
    scan_all: bool,
    pages: int,
    view: Optional[str],
    json_output: bool,
) -> None:
    """Enumerate keys of CONNECTION."""
    config = _load_config()

    async def _run() -> dict[str, Any]:
        registry = _registry(config)
        try:
            gateway = await registry.gateway(connection)
            session = NavigatorSession(
                gateway,
                connection,
                preferences_store=JsonPreferencesStore(Path(config.storage.preferences_file)),
                navigator=config.navigator,
                detail=config.detail,
            )
            try:
                await session.open(_database(config, database), pattern)
                if view is not None:
                    session.set_view_mode(_VIEW_MODES[view])
                await session.load_all(max_steps=None if scan_all else pages)
                return {
                    "database": session.database,
                    "pattern": session.pattern,
                    "complete": session.complete,
                    "cursor": session.state.cursor,
                    "view": session.preferences.view_mode,
                    "records": session.records(),
                    "groups": session.by_type(),
                    "tree": session.tree(),
                    "rows": session.tree_rows(),
                }
            finally:
                await session.close()
        finally:
            await registry.close_all()

    report = _execute(_run(), json_output=json_output)
    if json_output:
        payload: dict[str, Any] = {
            "connection": connection,
            "database": report["database"],
            "pattern": report["pattern"],
            "complete": report["complete"],
            "cursor": report["cursor"],
            "view": report["view"],
            "keys": [{"name": rec.name, "type": rec.type.value} for rec in report["records"]],
        }
        if report["view"] == "by_namespace":
            payload["tree"] = _tree_payload(report["tree"])
        else:
            payload["groups"] = [
                {"type": group.type.value, "keys": list(group.keys)} for group in report["groups"]
            ]
        console.print_json(data=payload)
        return

    quiet = _quiet(config)
    if report["view"] == "by_namespace":
        for row in report["rows"]:
            indent = "  " * row.depth
            if row.kind == "branch":
                marker = "+" if row.collapsed else "-"
                _emit_message(
                    f"{indent}[bold]{marker} {escape(row.label)}[/bold] [dim]({row.count})[/dim]",
                    quiet=quiet,
                )
            else:
                _emit_message(f"{indent}  {escape(row.label)}", quiet=quiet)
    else:
        for group in report["groups"]:
            _emit_message(
                f"[bold cyan]{group.type.value}[/bold cyan] [dim]({group.count})[/dim]", quiet=quiet
            )
            for key in group.keys:
                _emit_message(f"  {escape(key)}", quiet=quiet)

    status = "complete" if report["complete"] else "more keys available (use --all)"
    _emit_message(
        f"[dim]{len(report['records'])} keys from db {report['database']} "
        f"matching {escape(repr(report['pattern']))}; {status}.[/dim]",
        quiet=quiet,
    )


@keys.command("show")
@click.argument("connection")
@click.argument("key")
@_db_option
@_json_option
def keys_show(connection: str, key: str, database: Optional[int], json_output: bool) -> None:
    """Show the value and TTL of KEY."""
    config = _load_config()

    async def _snapshot(loader: KeyDetailLoader) -> tuple[Optional[LoadedKey], Optional[int]]:
        return loader.current, loader.ttl

    loaded, ttl = _execute(
        _with_key(config, connection, _database(config, database), key, _snapshot),
        json_output=json_output,
    )
    if loaded is None:
        _handle_cli_error(f"unable to load '{key}'", code="state_error", json_output=json_output)
    if json_output:
        console.print_json(data=_detail_payload(loaded, ttl))
        return
    _render_detail(loaded, ttl, config.cli.max_display_items)


@keys.command("create")
@click.argument("connection")
@click.argument("key")
@click.option(
    "--type",
    "key_type",
    type=click.Choice([key_type.value for key_type in CREATABLE_TYPES]),
    default=KeyType.STRING.value,
    show_default=True,
    help="Type of the new key.",
)
@click.option(
    "--value",
    default="",
    help="String value, first list item, set or zset member, hash field value or JSON text.",
)
@click.option("--field", default="", help="Field name of a new hash.")
@click.option("--score", type=float, default=0.0, show_default=True, help="Score of a zset member.")
@click.option("--ttl", type=click.IntRange(min=1), default=None, help="Expire after N seconds.")
@_db_option
@_json_option
def keys_create(
    connection: str,
    key: str,
    key_type: str,
    value: str,
    field: str,
    score: float,
    ttl: Optional[int],
    database: Optional[int],
    json_output: bool,
) -> None:
    """Create KEY holding a first value, optionally expiring it."""
    config = _load_config()

    async def _create(loader: KeyDetailLoader) -> tuple[Optional[LoadedKey], Optional[int]]:
        loaded = await loader.create(
            key, KeyType(key_type), value=value, field=field, score=score, ttl=ttl
        )
        return loaded, loader.ttl

    loaded, current_ttl = _execute(
        _with_key(config, connection, _database(config, database), key, _create, preload=False),
        json_output=json_output,
    )
    if loaded is None:
        _handle_cli_error(f"unable to load '{key}'", code="state_error", json_output=json_output)
    if json_output:
        console.print_json(data=_detail_payload(loaded, current_ttl))
        return
    expiry = f", expiring in {current_ttl}s" if current_ttl is not None and current_ttl > 0 else ""
    _emit_message(
        f"[green]Created {key_type} key {escape(key)}{expiry}.[/green]", quiet=_quiet(config)
    )


@keys.command("delete")
@click.argument("connection")
@click.argument("key")
@_db_option
def keys_delete(connection: str, key: str, database: Optional[int]) -> None:
    """Delete KEY."""
    config = _load_config()

    async def _run() -> int:
        registry = _registry(config)
        try:
            gateway = await registry.gateway(connection)
            return await gateway.delete(key, _database(config, database))
        finally:
            await registry.close_all()

    if _execute(_run(), json_output=False):
        _emit_message(f"[green]Deleted {escape(key)}.[/green]", quiet=_quiet(config))
    else:
        _emit_message(f"[yellow]{escape(key)} does not exist.[/yellow]", mode="warning")


@keys.command("set-ttl")
@click.argument("connection")
@click.argument("key")
@click.argument("seconds", type=int)
@_db_option
@_json_option
def keys_set_ttl(
    connection: str, key: str, seconds: int, database: Optional[int], json_output: bool
) -> None:
    """Expire KEY after SECONDS (a negative value removes the expiry)."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.set_ttl(seconds),
        success=lambda ttl: f"TTL of {key} is now {ttl}.",
        json_output=json_output,
    )


@keys.command("clear-ttl")
@click.argument("connection")
@click.argument("key")
@_db_option
@_json_option
def keys_clear_ttl(connection: str, key: str, database: Optional[int], json_output: bool) -> None:
    """Remove the expiry of KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.clear_ttl(),
        success=lambda _: f"{key} no longer expires.",
        json_output=json_output,
    )


# Typed mutations ------------------------------------------------------


@cli.group("hash")
def hash_group() -> None:
    """Edit hash fields."""


@hash_group.command("set")
@click.argument("connection")
@click.argument("key")
@click.argument("field")
@click.argument("value")
@_db_option
@_json_option
def hash_set(
    connection: str, key: str, field: str, value: str, database: Optional[int], json_output: bool
) -> None:
    """Set FIELD of hash KEY to VALUE."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.hash_set(field, value),
        success=lambda _: f"Set {field} on {key}.",
        json_output=json_output,
    )


@hash_group.command("del")
@click.argument("connection")
@click.argument("key")
@click.argument("field")
@_db_option
@_json_option
def hash_del(
    connection: str, key: str, field: str, database: Optional[int], json_output: bool
) -> None:
    """Remove FIELD from hash KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.hash_remove(field),
        success=lambda _: f"Removed {field} from {key}.",
        json_output=json_output,
    )


@cli.group("list")
def list_group() -> None:
    """Push and pop list values."""


@list_group.command("push")
@click.argument("connection")
@click.argument("key")
@click.argument("value")
@_db_option
@_json_option
def list_push(
    connection: str, key: str, value: str, database: Optional[int], json_output: bool
) -> None:
    """Push VALUE onto the head of list KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.list_push(value),
        success=lambda _: f"Pushed onto {key}.",
        json_output=json_output,
    )


@list_group.command("pop")
@click.argument("connection")
@click.argument("key")
@_db_option
@_json_option
def list_pop(connection: str, key: str, database: Optional[int], json_output: bool) -> None:
    """Pop the tail value of list KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.list_pop(),
        success=lambda popped: f"Popped {popped!r} from {key}.",
        json_output=json_output,
    )


@cli.group("set")
def set_group() -> None:
    """Add and remove set members."""


@set_group.command("add")
@click.argument("connection")
@click.argument("key")
@click.argument("member")
@_db_option
@_json_option
def set_add(
    connection: str, key: str, member: str, database: Optional[int], json_output: bool
) -> None:
    """Add MEMBER to set KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.set_add(member),
        success=lambda _: f"Added {member} to {key}.",
        json_output=json_output,
    )


@set_group.command("rem")
@click.argument("connection")
@click.argument("key")
@click.argument("member")
@_db_option
@_json_option
def set_rem(
    connection: str, key: str, member: str, database: Optional[int], json_output: bool
) -> None:
    """Remove MEMBER from set KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.set_remove(member),
        success=lambda _: f"Removed {member} from {key}.",
        json_output=json_output,
    )


@cli.group("zset")
def zset_group() -> None:
    """Add and remove sorted set members."""


@zset_group.command("add")
@click.argument("connection")
@click.argument("key")
@click.argument("member")
@click.argument("score", type=float)
@_db_option
@_json_option
def zset_add(
    connection: str,
    key: str,
    member: str,
    score: float,
    database: Optional[int],
    json_output: bool,
) -> None:
    """Add MEMBER with SCORE to sorted set KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.zset_add(member, score),
        success=lambda _: f"Added {member} ({score:g}) to {key}.",
        json_output=json_output,
    )


@zset_group.command("rem")
@click.argument("connection")
@click.argument("key")
@click.argument("member")
@_db_option
@_json_option
def zset_rem(
    connection: str, key: str, member: str, database: Optional[int], json_output: bool
) -> None:
    """Remove MEMBER from sorted set KEY."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.zset_remove(member),
        success=lambda _: f"Removed {member} from {key}.",
        json_output=json_output,
    )


@cli.group("json")
def json_group() -> None:
    """Replace JSON documents."""


@json_group.command("set")
@click.argument("connection")
@click.argument("key")
@click.argument("document")
@_db_option
@_json_option
def json_set(
    connection: str, key: str, document: str, database: Optional[int], json_output: bool
) -> None:
    """Replace the JSON document stored at KEY with DOCUMENT."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.replace_document(document),
        success=lambda _: f"Replaced document at {key}.",
        json_output=json_output,
    )


@cli.group("string")
def string_group() -> None:
    """Overwrite string values."""


@string_group.command("set")
@click.argument("connection")
@click.argument("key")
@click.argument("value")
@_db_option
@_json_option
def string_set(
    connection: str, key: str, value: str, database: Optional[int], json_output: bool
) -> None:
    """Overwrite string KEY with VALUE, keeping its expiry."""
    _apply(
        connection,
        key,
        database,
        lambda loader: loader.set_string(value),
        success=lambda _: f"Updated {key}.",
        json_output=json_output,
    )


# Pub/Sub --------------------------------------------------------------


@cli.group()
def pubsub() -> None:
    """Publish to and listen on channels."""


@pubsub.command("publish")
@click.argument("connection")
@click.argument("channel")
@click.argument("message")
@_json_option
def pubsub_publish(connection: str, channel: str, message: str, json_output: bool) -> None:
    """Publish MESSAGE to CHANNEL."""
    config = _load_config()

    async def _run() -> int:
        registry = _registry(config)
        try:
            manager = SubscriptionManager(await registry.gateway(connection))
            return await manager.publish(channel, message)
        finally:
            await registry.close_all()

    receivers = _execute(_run(), json_output=json_output)
    if json_output:
        console.print_json(data={"channel": channel, "receivers": receivers})
        return
    _emit_message(
        f"[green]Delivered to {receivers} subscriber(s).[/green]", quiet=_quiet(config)
    )


@pubsub.command("subscribe")
@click.argument("connection")
@click.argument("channel")
@click.option("--count", type=click.IntRange(min=1), default=None, help="Stop after N messages.")
@click.option("--timeout", type=float, default=None, help="Stop after this many seconds.")
@_json_option
def pubsub_subscribe(
    connection: str,
    channel: str,
    count: Optional[int],
    timeout: Optional[float],
    json_output: bool,
) -> None:
    """Print messages published to CHANNEL."""
    config = _load_config()

    async def _run() -> int:
        registry = _registry(config)
        manager = SubscriptionManager(await registry.gateway(connection))
        received = 0
        done = asyncio.Event()

        def _handle(message: Message) -> None:
            nonlocal received
            received += 1
            if json_output:
                console.print_json(data={"channel": message.channel, "data": message.data})
            else:
                console.print(
                    f"[cyan]{escape(message.channel)}[/cyan] {escape(message.data)}",
                    highlight=False,
                )
            if count is not None and received >= count:
                done.set()

        try:
            await manager.subscribe(channel, _handle)
            try:
                await asyncio.wait_for(done.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        finally:
            await manager.release_all()
            await registry.close_all()
        return received

    received = _execute(_run(), json_output=json_output)
    if not json_output:
        _emit_message(f"[dim]{received} message(s) received.[/dim]", quiet=_quiet(config))


# Configuration --------------------------------------------------------


@cli.group()
def config() -> None:
    """Manage keynav configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        effective = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        file_data = manager.load_file_overrides()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    before = manager.read_text().splitlines()

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        segments = assign_dotted(file_data, key, parsed_value)
        resolve_with_precedence(defaults=KeynavConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    # The header timestamp always changes; only report changed settings.
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.startswith(("-# Last updated", "+# Last updated"))
    ]

    if any(line.startswith(("-", "+")) and not line.startswith(("---", "+++")) for line in diff):
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=KeynavConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
