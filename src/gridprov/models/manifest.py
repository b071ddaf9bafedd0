"""Pydantic models for the desired-state manifest.

The manifest is the declared input of a reconciliation: the owning twin, the
VM deployments placed on individual nodes and the private networks spanning
several nodes.
"""

from __future__ import annotations

import ipaddress

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gridprov.models.resources import Disk, Machine, StorageNode


def _validate_ipv4_network(value: str) -> str:
    try:
        ipaddress.IPv4Network(value, strict=False)
    except ValueError as exc:
        raise ValueError(f"Invalid IPv4 range: {value}") from exc
    return value


class DeploymentSpec(BaseModel):
    """Resources placed together on one node.

    Attributes:
        name: Deployment name, the key of its state record
        node_id: Node the deployment is placed on
        network_name: Private network the machines join
        ip_range: Subnet of that network on this node
        description: Deployment description
        disks: Declared disks
        zdbs: Declared storage nodes
        machines: Declared virtual machines
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Deployment name")
    node_id: int = Field(..., ge=1, description="Node to place the deployment on")
    network_name: str = Field(..., description="Network the machines join")
    ip_range: str = Field(..., description="Network subnet on this node")
    description: str = Field(default="", description="Deployment description")
    disks: list[Disk] = Field(default_factory=list)
    zdbs: list[StorageNode] = Field(default_factory=list)
    machines: list[Machine] = Field(default_factory=list)

    @field_validator("ip_range")
    @classmethod
    def validate_ip_range(cls, v: str) -> str:
        """Validate the subnet notation."""
        return _validate_ipv4_network(v)


class NetworkSpec(BaseModel):
    """Full-mesh private network spanning several nodes.

    Attributes:
        name: Network name
        description: Network workload description
        ip_range: /16 range node subnets are carved from
        nodes: Participating node ids, in order
        public_node_id: Node fronting the external access point, if any
        public_endpoint_ip: Publicly reachable address of that node
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Network name")
    description: str = Field(default="", description="Workload description")
    ip_range: str = Field(..., description="Network range, e.g. 10.1.0.0/16")
    nodes: list[int] = Field(..., min_length=1, description="Participating nodes")
    public_node_id: int | None = Field(
        default=None, description="Node reachable by the external access point"
    )
    public_endpoint_ip: str | None = Field(
        default=None, description="Public address of the public node"
    )

    @field_validator("ip_range")
    @classmethod
    def validate_ip_range(cls, v: str) -> str:
        """Validate the network range is an IPv4 /16 or larger."""
        _validate_ipv4_network(v)
        if ipaddress.IPv4Network(v, strict=False).prefixlen > 16:
            raise ValueError(f"Network range {v} must be a /16 or larger")
        return v

    @field_validator("nodes")
    @classmethod
    def validate_unique_nodes(cls, v: list[int]) -> list[int]:
        """Validate node ids are unique."""
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate node ids in {v}")
        return v

    @model_validator(mode="after")
    def validate_public_node(self) -> NetworkSpec:
        """Validate the public node participates in the network."""
        if self.public_node_id is not None and self.public_node_id not in self.nodes:
            raise ValueError(
                f"public node {self.public_node_id} is not one of the nodes {self.nodes}"
            )
        return self


class ProvisionManifest(BaseModel):
    """Top-level desired state."""

    model_config = ConfigDict(extra="forbid")

    twin_id: int = Field(..., ge=1, description="Owning twin identity")
    deployments: list[DeploymentSpec] = Field(default_factory=list)
    networks: list[NetworkSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> ProvisionManifest:
        """Validate deployment and network names are unique."""
        for label, names in (
            ("deployment", [d.name for d in self.deployments]),
            ("network", [n.name for n in self.networks]),
        ):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            if duplicates:
                raise ValueError(f"Duplicate {label} names: {', '.join(duplicates)}")
        return self
