# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""quotasync CLI - keep ResourceQuota hard limits in line with queues"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from . import __version__
from .core.config import QuotaSyncConfig, load_config
from .core.exceptions import ConfigError, CredentialsError
from .core.logger import configure_logging
from .runtime.drift import DriftCorrector
from .runtime.manager import build_client, build_manager

logger = logging.getLogger("quotasync.cli")


def _overrides(
    kubeconfig: Optional[str],
    context: Optional[str],
    log_level: Optional[str],
    resync_period: Optional[float],
    create_missing: Optional[bool],
) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if kubeconfig:
        overrides.setdefault("substrate", {})["kubeconfig"] = kubeconfig
    if context:
        overrides.setdefault("substrate", {})["context"] = context
    if log_level:
        overrides.setdefault("observability", {})["log_level"] = log_level
    if resync_period is not None:
        overrides.setdefault("manager", {})["resync_period_seconds"] = resync_period
    if create_missing is not None:
        overrides.setdefault("manager", {})["create_missing"] = create_missing
    return overrides


def _fail(message: str):
    click.echo(f"[-] Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "config_file", type=click.Path(dir_okay=False), help="Config file"
)
@click.option("--kubeconfig", type=click.Path(dir_okay=False), help="kubeconfig path")
@click.option("--context", help="kubeconfig context")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    help="Log level",
)
@click.option("--resync-period", type=float, help="Drift-correction period (seconds)")
@click.option(
    "--create-missing/--no-create-missing",
    default=None,
    help="Let drift correction create missing resource quotas",
)
@click.pass_context
def cli(
    ctx,
    config_file,
    kubeconfig,
    context,
    log_level,
    resync_period,
    create_missing,
):
    """quotasync - ResourceQuota manager for queues.

    Creates a ResourceQuota when a queue appears, deletes it when the queue
    goes away, and keeps its cpu/memory hard limits equal to the queue's
    allocation.

    Commands:
        quotasync run        - Watch queues and correct drift until stopped
        quotasync sync-once  - Run a single drift-correction pass
        quotasync config     - Show the effective configuration
    """
    try:
        config = load_config(
            config_file=Path(config_file) if config_file else None,
            overrides=_overrides(
                kubeconfig, context, log_level, resync_period, create_missing
            ),
        )
    except ConfigError as e:
        _fail(str(e))

    configure_logging(
        level=config.observability.log_level,
        log_file=config.observability.log_file,
        file_output=config.observability.file_output,
    )
    ctx.obj = config


@cli.command()
@click.pass_obj
def run(config: QuotaSyncConfig):
    """Run the quota manager until SIGINT/SIGTERM.

    Examples:
        quotasync run
        quotasync --kubeconfig ~/.kube/config --context prod run
        quotasync --resync-period 5 run
    """
    try:
        manager = build_manager(config)
    except CredentialsError as e:
        _fail(str(e))

    async def _run():
        manager.install_signal_handlers()
        await manager.run_forever()

    asyncio.run(_run())


@cli.command("sync-once")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def sync_once(config: QuotaSyncConfig, as_json: bool):
    """Run one drift-correction pass and print what it did."""
    try:
        client = build_client(config)
    except CredentialsError as e:
        _fail(str(e))

    async def _sync():
        async with client:
            drift = DriftCorrector(
                client, create_missing=config.manager.create_missing
            )
            return await drift.run_once()

    report = asyncio.run(_sync())

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        if report.aborted:
            click.echo("[-] Could not list queues; nothing was reconciled")
        else:
            click.echo(
                f"[+] updated={report.updated} unchanged={report.unchanged} "
                f"created={report.created} skipped={report.skipped} "
                f"failed={report.failed}"
            )
            for namespace in report.failed_namespaces:
                click.echo(f"    failed: {namespace}")

    if report.aborted or report.failed:
        sys.exit(2)


@cli.command("config")
@click.pass_obj
def show_config(config: QuotaSyncConfig):
    """Print the effective configuration as YAML."""
    data = config.model_dump(mode="json")
    if data["substrate"].get("token"):
        data["substrate"]["token"] = "***"
    click.echo(yaml.safe_dump(data, sort_keys=False))


if __name__ == "__main__":
    cli()
