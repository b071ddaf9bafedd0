"""CLI command showing the changes a reconciliation would make.

Planning only reads the manifest and the recorded state; it never talks to a
ledger or node agent.
"""

from __future__ import annotations

from pathlib import Path

import click

from gridprov.cli.errors import handle_provision_errors
from gridprov.config.loader import ManifestLoader
from gridprov.lib.logging_config import get_logger, setup_logging
from gridprov.provision.diff import ChangeAction
from gridprov.provision.reconciler import (
    deployment_fields_changed,
    plan_deployment,
    plan_network,
)
from gridprov.state import get_state_path, load_state

logger = get_logger(__name__)

_SYMBOLS = {
    ChangeAction.ADD: ("+", "green"),
    ChangeAction.CHANGE: ("~", "yellow"),
    ChangeAction.UNCHANGED: ("=", None),
    ChangeAction.REMOVE: ("-", "red"),
}


def _line(action: ChangeAction, text: str) -> None:
    symbol, color = _SYMBOLS[action]
    click.secho(f"  {symbol} {text}", fg=color)


@click.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
def plan(manifest: str, verbose: bool, quiet: bool) -> None:
    """Show what a reconciliation of MANIFEST would change."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_provision_errors():
        manifest_path = Path(manifest)
        declared = ManifestLoader().load_manifest(manifest_path)
        recorded = load_state(get_state_path(manifest_path))

        for spec in declared.deployments:
            record = recorded.deployments.get(spec.name)
            click.secho(f"Deployment {spec.name} (node {spec.node_id})", bold=True)
            if record is not None and record.node_id != spec.node_id:
                click.secho(
                    f"  ! recorded on node {record.node_id}; moving is not supported",
                    fg="red",
                )
            if record is not None and deployment_fields_changed(spec, record):
                _line(
                    ChangeAction.CHANGE,
                    f"network {spec.network_name} ({spec.ip_range})",
                )
            for change in plan_deployment(spec, record):
                _line(change.action, f"{change.kind} {change.name} (version {change.version})")

        for network in declared.networks:
            network_record = recorded.networks.get(network.name)
            click.secho(f"Network {network.name} ({network.ip_range})", bold=True)
            for node_id, action in plan_network(network, network_record):
                _line(action, f"node {node_id}")

        declared_deployments = {d.name for d in declared.deployments}
        declared_networks = {n.name for n in declared.networks}
        for name in sorted(set(recorded.deployments) - declared_deployments):
            _line(ChangeAction.REMOVE, f"deployment {name}")
        for name in sorted(set(recorded.networks) - declared_networks):
            _line(ChangeAction.REMOVE, f"network {name}")
