"""Configuration loading and runtime settings for gridprov.

Main components:
- ManifestLoader: Load and validate desired-state manifests
- Environment variable substitution (${VAR_NAME} pattern)
- ProvisionerSettings: Timeouts and allocation limits
"""

from gridprov.config.loader import ManifestLoader, substitute_env_vars
from gridprov.config.settings import ProvisionerSettings

__all__ = [
    "ManifestLoader",
    "ProvisionerSettings",
    "substitute_env_vars",
]
