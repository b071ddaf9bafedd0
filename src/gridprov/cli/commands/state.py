"""CLI commands reading the recorded provisioner state."""

from __future__ import annotations

from pathlib import Path

import click

from gridprov.cli.errors import handle_provision_errors
from gridprov.lib.errors import ConfigError
from gridprov.lib.logging_config import setup_logging
from gridprov.state import get_network_record, get_state_path, load_state


@click.command(name="access-config")
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.argument("network")
def access_config(manifest: str, network: str) -> None:
    """Print the access point configuration of NETWORK."""
    with handle_provision_errors():
        record = get_network_record(get_state_path(Path(manifest)), network)
        if record is None:
            raise ConfigError(
                field="network_state",
                message=f"No record for network '{network}'. Apply it first.",
            )
        if not record.access_config:
            raise ConfigError(
                field="public_node_id",
                message=f"Network '{network}' has no public node",
            )
        click.echo(record.access_config, nl=False)


@click.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
def state(manifest: str, verbose: bool) -> None:
    """Summarize the state recorded for MANIFEST."""
    setup_logging(verbose=verbose)

    with handle_provision_errors():
        recorded = load_state(get_state_path(Path(manifest)))
        if not recorded.deployments and not recorded.networks:
            click.echo("No recorded state.")
            return

        for name, record in sorted(recorded.deployments.items()):
            click.secho(f"Deployment {name}", bold=True)
            click.echo(f"  Node:      {record.node_id}")
            click.echo(f"  Contract:  {record.contract_id}")
            click.echo(f"  Version:   {record.version}")
            click.echo(f"  Status:    {record.status.value}")
            for machine in record.machines:
                click.echo(f"  Machine:   {machine.name} {machine.ip}")
            if record.updated_at:
                click.echo(f"  Updated:   {record.updated_at.isoformat()}")

        for name, network in sorted(recorded.networks.items()):
            click.secho(f"Network {name}", bold=True)
            click.echo(f"  Range:     {network.ip_range}")
            if network.public_node_id is not None:
                click.echo(f"  Public:    node {network.public_node_id}")
            for node in network.nodes:
                click.echo(
                    f"  Node {node.node_id}:    {node.subnet} port {node.port} "
                    f"contract {node.contract_id} v{node.version} ({node.status.value})"
                )
