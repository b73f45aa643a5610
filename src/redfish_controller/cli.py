"""Redfish controller CLI (rfc).

Usage:
    rfc apply bios.yaml              # Reconcile one spec file
    rfc power ForceRestart           # Drive host power through the endpoint lock
    rfc manager-reset                # Restart the iDRAC and wait for it
    rfc registry BiosAttributeRegistry   # Show a device attribute registry

Connection parameters come from REDFISH_ENDPOINT, REDFISH_USERNAME,
REDFISH_PASSWORD and REDFISH_SSL_INSECURE, or the matching options.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from .config import ConfigurationError, ControllerConfig
from .errors import ReconcileError
from .main import setup_logging
from .models import ManagerResetSpec, PowerSpec, RedfishServer
from .power import ResetType
from .reconciler import ReconcileResult, Reconciler
from .redfish_client import RedfishClient, RedfishError
from .registry import AttributeRegistry, RegistryClient
from .spec_loader import SpecLoadError, load_spec


def load_config() -> ControllerConfig:
    try:
        return ControllerConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def result_summary(result: ReconcileResult) -> dict[str, Any]:
    """JSON-friendly view of a reconciliation result."""
    summary: dict[str, Any] = {
        "endpoint": result.endpoint,
        "resource": result.resource,
        "success": result.success,
        "changed": result.changed,
        "phases": [phase.value for phase in result.phases],
        "changed_attributes": sorted(result.diff),
        "final_state": result.final_state,
        "duration_seconds": round(result.duration_seconds, 3),
    }
    if result.job_outcome is not None:
        summary["job"] = {
            "uri": result.job_outcome.handle.uri,
            "status": result.job_outcome.status.value,
            "polls": result.job_outcome.polls,
        }
    if result.error is not None:
        summary["error"] = {"type": type(result.error).__name__, "message": str(result.error)}
    return summary


def emit(result: ReconcileResult) -> None:
    click.echo(json.dumps(result_summary(result), indent=2, default=str))
    if not result.success:
        raise click.ClickException(f"{type(result.error).__name__}: {result.error}")


def registry_rows(registry: AttributeRegistry, prefix: str | None) -> list[dict[str, Any]]:
    rows = []
    for entry in registry.attributes:
        if prefix and not entry.attribute_name.startswith(prefix):
            continue
        rows.append(
            {
                "name": entry.attribute_name,
                "type": entry.type,
                "read_only": entry.read_only,
                "allowed_values": entry.allowed_values or None,
            }
        )
    return rows


connection_options = [
    click.option("--endpoint", envvar="REDFISH_ENDPOINT", required=True, help="BMC address"),
    click.option("--username", envvar="REDFISH_USERNAME", required=True, help="BMC user"),
    click.option(
        "--password", envvar="REDFISH_PASSWORD", required=True, help="BMC password", hide_input=True
    ),
    click.option(
        "--insecure",
        envvar="REDFISH_SSL_INSECURE",
        is_flag=True,
        help="Skip TLS certificate verification",
    ),
]


def with_connection(func: Any) -> Any:
    for option in reversed(connection_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="rfc")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Redfish controller CLI (rfc).

    Declarative BMC configuration: BIOS, boot order, manager attributes,
    NICs, storage controllers and volumes, directory services, host power
    and manager restarts.

    \b
    Quick Start:
        rfc apply specs/bios.yaml
        rfc power ForceRestart
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--deadline", type=float, default=None, help="Overall deadline in seconds")
def apply(spec_file: Path, deadline: float | None) -> None:
    """Reconcile the resource described by SPEC_FILE."""
    config = load_config()
    try:
        spec = load_spec(spec_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    reconciler = Reconciler(config)
    try:
        result = asyncio.run(reconciler.reconcile_spec(spec, deadline_seconds=deadline))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    emit(result)


@cli.command()
@click.argument("reset_type", type=click.Choice([reset.value for reset in ResetType]))
@with_connection
@click.option("--system-id", default=None, help="ComputerSystem id (default: first system)")
@click.option("--max-wait", type=int, default=None, help="Seconds to wait for the power state")
@click.option("--interval", type=float, default=None, help="Seconds between power state checks")
def power(
    reset_type: str,
    endpoint: str,
    username: str,
    password: str,
    insecure: bool,
    system_id: str | None,
    max_wait: int | None,
    interval: float | None,
) -> None:
    """Issue RESET_TYPE and wait for the resulting power state."""
    config = load_config()
    spec = PowerSpec(
        redfish_server=RedfishServer(
            endpoint=endpoint, user=username, password=password, ssl_insecure=insecure
        ),
        system_id=system_id,
        desired_power_action=ResetType(reset_type),
        maximum_wait_time=max_wait,
        check_interval=interval,
    )
    emit(asyncio.run(Reconciler(config).reconcile_spec(spec)))


@cli.command("manager-reset")
@with_connection
@click.option("--manager-id", default=None, help="Manager id (default: first manager)")
@click.option(
    "--settle-time", type=int, default=30, show_default=True, help="Seconds before the first check"
)
@click.option("--max-wait", type=int, default=None, help="Seconds to wait for the manager")
@click.option("--interval", type=float, default=None, help="Seconds between reachability checks")
def manager_reset(
    endpoint: str,
    username: str,
    password: str,
    insecure: bool,
    manager_id: str | None,
    settle_time: int,
    max_wait: int | None,
    interval: float | None,
) -> None:
    """Restart the manager (iDRAC) and wait until it answers again."""
    config = load_config()
    spec = ManagerResetSpec(
        redfish_server=RedfishServer(
            endpoint=endpoint, user=username, password=password, ssl_insecure=insecure
        ),
        manager_id=manager_id,
        settle_time=settle_time,
        reset_timeout=max_wait,
        check_interval=interval,
    )
    emit(asyncio.run(Reconciler(config).reconcile_spec(spec)))


async def fetch_registry(client: RedfishClient, name: str) -> AttributeRegistry:
    try:
        return await RegistryClient(client).fetch(name)
    finally:
        client.close()


@cli.command()
@click.argument("name")
@with_connection
@click.option("--prefix", default=None, help="Only attributes whose name starts with PREFIX")
def registry(
    name: str,
    endpoint: str,
    username: str,
    password: str,
    insecure: bool,
    prefix: str | None,
) -> None:
    """Show the attribute registry NAME as declared by the device."""
    config = load_config()
    server = RedfishServer(endpoint=endpoint, user=username, password=password, ssl_insecure=insecure)
    client = RedfishClient(server.to_endpoint(), timeout_seconds=config.http_timeout_seconds)
    try:
        attribute_registry = asyncio.run(fetch_registry(client, name))
    except (ReconcileError, RedfishError) as e:
        raise click.ClickException(str(e)) from e

    rows = registry_rows(attribute_registry, prefix)
    click.echo(
        json.dumps(
            {"registry": attribute_registry.name, "count": len(rows), "attributes": rows},
            indent=2,
        )
    )


if __name__ == "__main__":
    cli()
