"""Models describing a multi-node private overlay network."""

from __future__ import annotations

import ipaddress
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from gridprov.config.defaults import UNPROVISIONED
from gridprov.lib.errors import TopologyError


class KeyPair(BaseModel):
    """WireGuard key pair, both halves base64 encoded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    private_key: str
    public_key: str


class NodeRecordStatus(str, Enum):
    """Whether a node's last submission completed."""

    PENDING = "pending"
    DEPLOYED = "deployed"


class NodeDeploymentRecord(BaseModel):
    """Persisted per-node state of a network.

    ``version`` and ``contract_id`` are ``-1`` until the node has a contract.
    A ``pending`` record with a contract id marks a contract whose deployment
    was not confirmed; the next update reuses that contract instead of
    creating a new one.
    """

    model_config = ConfigDict(extra="forbid")

    node_id: int
    version: int = UNPROVISIONED
    contract_id: int = UNPROVISIONED
    private_key: str
    public_key: str
    port: int
    subnet: str
    status: NodeRecordStatus = NodeRecordStatus.PENDING

    @property
    def key_pair(self) -> KeyPair:
        return KeyPair(private_key=self.private_key, public_key=self.public_key)


class NetworkConfiguration(BaseModel):
    """Per-run aggregate of everything needed to lay out the mesh.

    Attributes:
        name: Network name, also the network workload name
        description: Workload description
        ip_range: The /16 range the node subnets are carved from
        node_ids: Participating nodes, in declaration order
        keys: Key pair per node
        versions: Last applied version per node, ``-1`` for new nodes
        contract_ids: Contract per node, ``-1`` for new nodes
        subnets: Assigned /24 subnet per node
        ports: Assigned listen port per node
        public_node_id: Node reachable by the external access point, if any
        external_subnet: Subnet of the external access point
        external_key: Key pair of the external access point
        public_endpoint_ip: Address the access point dials; defaults to the
            public node's directory address
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    ip_range: str
    node_ids: list[int] = Field(default_factory=list)
    keys: dict[int, KeyPair] = Field(default_factory=dict)
    versions: dict[int, int] = Field(default_factory=dict)
    contract_ids: dict[int, int] = Field(default_factory=dict)
    subnets: dict[int, str] = Field(default_factory=dict)
    ports: dict[int, int] = Field(default_factory=dict)
    public_node_id: int | None = None
    external_subnet: str | None = None
    external_key: KeyPair | None = None
    public_endpoint_ip: str | None = None

    def version_of(self, node_id: int) -> int:
        return self.versions.get(node_id, UNPROVISIONED)

    def contract_of(self, node_id: int) -> int:
        return self.contract_ids.get(node_id, UNPROVISIONED)

    def check_disjoint(self) -> None:
        """Ensure node subnets and the access subnet never overlap.

        Raises:
            TopologyError: If two subnets overlap
        """
        named: list[tuple[str, ipaddress.IPv4Network]] = [
            (f"node {node_id}", ipaddress.ip_network(subnet, strict=False))
            for node_id, subnet in self.subnets.items()
            if node_id in self.node_ids
        ]
        if self.external_subnet:
            named.append(
                ("access point", ipaddress.ip_network(self.external_subnet, strict=False))
            )
        for i, (left_name, left) in enumerate(named):
            for right_name, right in named[i + 1 :]:
                if left.overlaps(right):
                    raise TopologyError(
                        f"{left_name} and {right_name} have overlapping subnets",
                        actual=f"{left} / {right}",
                    )
