"""Manifest loader for gridprov.

Reads the declared state from a YAML manifest, substitutes ``${VAR}``
references from the environment and validates the result against the
manifest models.
"""

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from gridprov.config.validator import flatten_pydantic_errors
from gridprov.lib.errors import ConfigError
from gridprov.models.manifest import ProvisionManifest

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def substitute_env_vars(text: str, env: Mapping[str, str] | None = None) -> str:
    """Replace ``${VAR}`` references with environment values.

    Raises:
        ConfigError: If a referenced variable is not set
    """
    source = os.environ if env is None else env

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in source:
            raise ConfigError(
                name,
                f"Environment variable '{name}' is referenced but not set",
            )
        return source[name]

    return _ENV_PATTERN.sub(replace, text)


class ManifestLoader:
    """Loads and validates provisioning manifests from YAML files."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = env

    def parse_yaml(self, file_path: str | Path) -> dict[str, Any]:
        """Parse a manifest file into a dictionary, substituting env vars.

        Raises:
            ConfigError: If the file is missing, unreadable or not valid YAML
        """
        path = Path(file_path)
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                str(path),
                f"Manifest not found at {path}. Please ensure the file exists.",
            ) from e

        substituted = substitute_env_vars(raw_text, self._env)
        try:
            content = yaml.safe_load(substituted)
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse", f"Failed to parse YAML file {path}: {str(e)}"
            ) from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(
                "yaml_parse",
                f"Manifest {path} must be a mapping, got {type(content).__name__}",
            )
        return content

    def load_manifest(self, file_path: str | Path) -> ProvisionManifest:
        """Load and validate a manifest.

        Raises:
            ConfigError: If the file cannot be read or fails validation
        """
        content = self.parse_yaml(file_path)
        try:
            manifest = ProvisionManifest(**content)
        except PydanticValidationError as e:
            error_text = "\n".join(flatten_pydantic_errors(e))
            raise ConfigError(
                "manifest_validation",
                f"Invalid manifest in {file_path}:\n{error_text}",
            ) from e

        logger.debug(
            f"Loaded manifest {file_path}: {len(manifest.deployments)} deployments, "
            f"{len(manifest.networks)} networks"
        )
        return manifest
