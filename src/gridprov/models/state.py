"""Provisioner state models for persisted deployments and networks."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gridprov.models.network import NodeDeploymentRecord, NodeRecordStatus
from gridprov.models.resources import Disk, Machine, StorageNode


class DeploymentStateRecord(BaseModel):
    """Persisted record of one applied VM deployment."""

    model_config = ConfigDict(extra="forbid")

    node_id: int = Field(..., description="Node the deployment lives on")
    contract_id: int = Field(..., description="Ledger contract id")
    version: int = Field(..., description="Last applied deployment version")
    network_name: str = Field(..., description="Network the machines joined")
    ip_range: str = Field(..., description="Network subnet on this node")
    description: str = Field(default="", description="Deployment description")
    disks: list[Disk] = Field(default_factory=list)
    zdbs: list[StorageNode] = Field(default_factory=list)
    machines: list[Machine] = Field(default_factory=list)
    used_ips: list[str] = Field(default_factory=list)
    status: NodeRecordStatus = Field(
        default=NodeRecordStatus.DEPLOYED,
        description="pending while the first submission is unconfirmed",
    )
    created_at: datetime | None = Field(
        default=None, description="Initial deployment timestamp"
    )
    updated_at: datetime | None = Field(
        default=None, description="Last update timestamp"
    )


class NetworkStateRecord(BaseModel):
    """Persisted record of one applied private network."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Network name")
    description: str = Field(default="", description="Workload description")
    ip_range: str = Field(..., description="Network range")
    public_node_id: int | None = Field(default=None)
    public_endpoint_ip: str | None = Field(default=None)
    external_subnet: str | None = Field(default=None)
    external_private_key: str | None = Field(default=None)
    external_public_key: str | None = Field(default=None)
    access_config: str = Field(default="", description="Access configuration")
    nodes: list[NodeDeploymentRecord] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)


class ProvisionerState(BaseModel):
    """Top-level provisioner state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    deployments: dict[str, DeploymentStateRecord] = Field(
        default_factory=dict, description="Deployments keyed by name"
    )
    networks: dict[str, NetworkStateRecord] = Field(
        default_factory=dict, description="Networks keyed by name"
    )
