"""Command-line entry point for gridprov."""

from __future__ import annotations

import click

from gridprov import __version__
from gridprov.cli.commands.plan import plan
from gridprov.cli.commands.state import access_config, state


@click.group()
@click.version_option(__version__, prog_name="gridprov")
def main() -> None:
    """Reconcile declared deployments and private networks.

    Commands:

        plan           Show what a reconciliation would change

        access-config  Print the access point configuration of a network

        state          Summarize the recorded state
    """


main.add_command(plan)
main.add_command(access_config)
main.add_command(state)


if __name__ == "__main__":
    main()
