"""Operator CLI for inspecting and editing the service registry."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .application.registry import ServiceRegistry
from .domain.exceptions import RegistryError
from .domain.models import MembershipSnapshot, ServiceInstanceRecord
from .infrastructure.config import EtcdConnectionConfig, RegistryConfig
from .infrastructure.etcd_store import EtcdKVStore
from .infrastructure.in_memory_store import InMemoryKVStore

console = Console()


def build_table(name: str, records: list[ServiceInstanceRecord]) -> Table:
    table = Table(title=f"Service: {name}", box=box.ROUNDED)
    table.add_column("Address", style="cyan")
    table.add_column("Version", style="green")
    for record in records:
        table.add_row(record.address, record.version or "-")
    if not records:
        table.caption = "no live instances"
    return table


async def open_registry(options: dict[str, Any], ttl: int | None = None) -> ServiceRegistry:
    """Build and connect a registry from the group options."""
    config_values: dict[str, Any] = {"key_prefix": options["prefix"]}
    if ttl is not None:
        config_values["ttl_seconds"] = ttl
    config = RegistryConfig(**config_values)

    store: InMemoryKVStore | EtcdKVStore
    if options["memory"]:
        store = InMemoryKVStore(keepalive_interval_ratio=config.keepalive_interval_ratio)
    else:
        overrides: dict[str, Any] = {}
        if options["endpoints"]:
            overrides["endpoints"] = options["endpoints"]
        store = EtcdKVStore(
            EtcdConnectionConfig.from_env(**overrides),
            keepalive_interval_ratio=config.keepalive_interval_ratio,
        )
    await store.connect()
    return ServiceRegistry(store, config=config)


def run(options: dict[str, Any], action: Callable[[ServiceRegistry], Awaitable[None]], **kw: Any) -> None:
    """Run one async action against a fresh registry, mapping errors to exit codes."""

    async def main() -> None:
        registry = await open_registry(options, **kw)
        try:
            await action(registry)
        finally:
            await registry.close()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    except RegistryError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid input:[/red] {escape(str(e))}")
        sys.exit(2)


def split_endpoints(ctx: click.Context, param: click.Parameter, value: str | None) -> list[str]:
    if not value:
        return []
    return [endpoint.strip() for endpoint in value.split(",") if endpoint.strip()]


@click.group()
@click.option(
    "--endpoints",
    "-e",
    callback=split_endpoints,
    help="Comma separated etcd endpoints (default: $ETCD_ENDPOINTS or localhost:2379)",
)
@click.option("--prefix", default="/services", show_default=True, help="Key root for instances")
@click.option("--memory", is_flag=True, help="Use a process-local store instead of etcd")
@click.pass_context
def main(ctx: click.Context, endpoints: list[str], prefix: str, memory: bool) -> None:
    """Register, discover and watch services in etcd."""
    ctx.obj = {"endpoints": endpoints, "prefix": prefix, "memory": memory}


@main.command()
@click.argument("name")
@click.argument("address")
@click.option("--version", "-v", "version", default="", help="Instance metadata")
@click.option("--ttl", type=int, default=None, help="Lease TTL in seconds")
@click.pass_obj
def register(options: dict[str, Any], name: str, address: str, version: str, ttl: int | None) -> None:
    """Register ADDRESS under NAME and keep it alive until Ctrl-C."""

    async def action(registry: ServiceRegistry) -> None:
        record = await registry.register(name, address, version)
        console.print(
            f"[green]Registered[/green] {record.name} at {record.address} "
            f"(ttl {registry.config.ttl_seconds}s), press Ctrl-C to stop"
        )
        await asyncio.Event().wait()

    run(options, action, ttl=ttl)


@main.command()
@click.argument("name")
@click.argument("address")
@click.pass_obj
def unregister(options: dict[str, Any], name: str, address: str) -> None:
    """Remove ADDRESS from NAME."""

    async def action(registry: ServiceRegistry) -> None:
        await registry.unregister(name, address)
        console.print(f"[green]Unregistered[/green] {name} at {address}")

    run(options, action)


@main.command()
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output instances as JSON")
@click.pass_obj
def discover(options: dict[str, Any], name: str, as_json: bool) -> None:
    """List the live instances of NAME."""

    async def action(registry: ServiceRegistry) -> None:
        records = await registry.discover(name)
        if as_json:
            print(json.dumps([record.model_dump() for record in records], indent=2))
        else:
            console.print(build_table(name, records))

    run(options, action)


@main.command()
@click.argument("name")
@click.pass_obj
def watch(options: dict[str, Any], name: str) -> None:
    """Print the membership of NAME now and after every change."""

    def show(snapshot: MembershipSnapshot) -> None:
        console.print(build_table(snapshot.service_name, list(snapshot.instances)))

    async def action(registry: ServiceRegistry) -> None:
        await registry.watch(name, show)
        await asyncio.Event().wait()

    run(options, action)


if __name__ == "__main__":
    main()
