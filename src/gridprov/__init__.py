"""gridprov - declarative provisioning for a decentralized compute grid.

Reconciles declared VM deployments and full-mesh private networks against
the state recorded by earlier runs.

Main features:
- Diff declared disks, storage nodes and machines against recorded state
- Build versioned, signed workloads and deployments
- Allocate private addresses, node subnets and listen ports
- Generate full-mesh WireGuard topologies with an optional access point
- Drive contracts and node agents through create, update and cancel
"""

from gridprov.config.loader import ManifestLoader
from gridprov.lib.errors import ConfigError, GridProvError, ValidationError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ManifestLoader",
    "ConfigError",
    "GridProvError",
    "ValidationError",
]
