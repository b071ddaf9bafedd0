"""Error handling shared by gridprov commands."""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from gridprov.lib.errors import (
    ConfigError,
    DeploymentError,
    GridProvError,
    ValidationError,
)
from gridprov.lib.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def handle_provision_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in gridprov commands.

    Exit codes:
        2: Configuration or validation error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        click.secho(f"Error: Invalid value for {e.field}", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except GridProvError as e:
        logger.error(f"Provisioning error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
