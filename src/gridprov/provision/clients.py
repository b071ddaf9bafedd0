"""Interfaces of the external collaborators driven by the provisioner.

Concrete ledger and node agent clients live outside this package; the
reconcilers only depend on these abstract interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from gridprov.lib.errors import TopologyError
from gridprov.models.workload import Deployment


class LedgerClient(ABC):
    """Abstract client of the ledger holding billing contracts."""

    @abstractmethod
    def create_contract(self, twin_id: int, node_id: int, deployment_hash: str) -> int:
        """Create a node contract for a deployment hash.

        Args:
            twin_id: Owning twin
            node_id: Node the deployment is placed on
            deployment_hash: Hex challenge hash of the signed deployment

        Returns:
            The new contract id.
        """

    @abstractmethod
    def update_contract(self, twin_id: int, contract_id: int, deployment_hash: str) -> int:
        """Point an existing contract at a new deployment hash.

        Returns:
            The contract id (normally unchanged).
        """

    @abstractmethod
    def cancel_contract(self, twin_id: int, contract_id: int) -> None:
        """Cancel a contract; authoritative for billing."""

    @abstractmethod
    def resolve_node(self, node_id: int) -> int:
        """Return the twin id of the agent running on ``node_id``."""


class NodeAgentClient(ABC):
    """Abstract client of the agent running on a node.

    Every call takes the target node id; ``timeout`` bounds the call in
    seconds.
    """

    @abstractmethod
    def deploy(self, node_id: int, deployment: Deployment, *, timeout: float) -> None:
        """Submit a new deployment."""

    @abstractmethod
    def update(self, node_id: int, deployment: Deployment, *, timeout: float) -> None:
        """Submit a new version of an existing deployment."""

    @abstractmethod
    def get(self, node_id: int, contract_id: int, *, timeout: float) -> Deployment:
        """Fetch a deployment, including per-workload results."""

    @abstractmethod
    def delete(self, node_id: int, contract_id: int, *, timeout: float) -> None:
        """Delete a deployment."""

    @abstractmethod
    def list_reserved_ports(self, node_id: int) -> list[int]:
        """Return the listen ports already reserved on a node."""


class IdentityProvider(ABC):
    """Signing identity of the owning twin."""

    @property
    @abstractmethod
    def twin_id(self) -> int:
        """Twin id deployments are signed and owned by."""

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        """Sign raw bytes."""

    @abstractmethod
    def encrypt_for(self, secret: str) -> str:
        """Encrypt a secret field for the owning identity; returns hex."""


class NodeDirectory(ABC):
    """Resolves node ids to reachable addresses."""

    @abstractmethod
    def resolve(self, node_id: int) -> str:
        """Return the address peers use to reach ``node_id``."""


class StaticNodeDirectory(NodeDirectory):
    """Node directory backed by a fixed mapping."""

    def __init__(self, addresses: Mapping[int, str]) -> None:
        self._addresses = dict(addresses)

    def resolve(self, node_id: int) -> str:
        try:
            return self._addresses[node_id]
        except KeyError as exc:
            raise TopologyError(
                f"no known address for node {node_id}", actual=str(node_id)
            ) from exc
