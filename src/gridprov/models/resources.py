"""Pydantic models for declared and recorded resources.

A declared resource is the user's intent for one disk, storage node (zdb) or
virtual machine. The same models double as recorded resources: once a
deployment is applied the engine returns copies with ``version`` (and, for
machines, ``ip``) filled in, and the caller persists them for the next
reconciliation.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class ResourceKind(str, Enum):
    """Kinds of resources a deployment can hold."""

    DISK = "disk"
    ZDB = "zdb"
    MACHINE = "machine"


class ZdbMode(str, Enum):
    """Storage modes supported by a zdb namespace."""

    USER = "user"
    SEQ = "seq"


class Disk(BaseModel):
    """Block-backed disk mounted into machines.

    Attributes:
        name: Unique disk name within the deployment
        size_gb: Disk size in gigabytes
        description: Human description sent with the workload
        version: Last applied workload version (recorded state only)
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["disk"] = "disk"
    name: str = Field(..., description="Unique disk name within the deployment")
    size_gb: int = Field(..., description="Disk size in gigabytes")
    description: str = Field(default="", description="Workload description")
    version: int | None = Field(default=None, description="Last applied version")


class StorageNode(BaseModel):
    """Key-value storage node (zdb namespace).

    The password is kept in plain text in declared and recorded state; it is
    encrypted by the identity collaborator right before the workload is built.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["zdb"] = "zdb"
    name: str = Field(..., description="Unique storage node name")
    size_gb: int = Field(..., description="Namespace size in gigabytes")
    description: str = Field(default="", description="Workload description")
    password: str = Field(..., description="Namespace password (plain text)")
    mode: ZdbMode = Field(default=ZdbMode.USER, description="Namespace mode")
    version: int | None = Field(default=None, description="Last applied version")


class MountBinding(BaseModel):
    """Binds a disk of the same deployment to a path inside a machine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    disk_name: str
    mount_point: str


class EnvVar(BaseModel):
    """Environment variable passed to a machine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str
    value: str


class Machine(BaseModel):
    """Virtual machine booted from an flist image.

    Attributes:
        name: Machine name; identity together with ``flist``
        flist: Image reference the machine boots from
        cpu: Virtual CPU count
        memory_mb: Memory in megabytes
        entrypoint: Command run at boot
        description: Human description sent with the workload
        mounts: Disk bindings, resolved against the deployment's disks
        env_vars: Environment variables; the last duplicate key wins
        ip: Private network address, declared or assigned by the allocator
        version: Last applied workload version (recorded state only)
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["machine"] = "machine"
    name: str = Field(..., description="Machine name")
    flist: str = Field(..., description="Image reference")
    cpu: int = Field(default=1, description="Virtual CPU count")
    memory_mb: int = Field(default=1024, description="Memory in megabytes")
    entrypoint: str = Field(default="", description="Command run at boot")
    description: str = Field(default="", description="Workload description")
    mounts: list[MountBinding] = Field(default_factory=list)
    env_vars: list[EnvVar] = Field(default_factory=list)
    ip: str | None = Field(default=None, description="Private network address")
    version: int | None = Field(default=None, description="Last applied version")

    def env_mapping(self) -> dict[str, str]:
        """Return environment variables as a mapping, last write wins."""
        env: dict[str, str] = {}
        for var in self.env_vars:
            env[var.key] = var.value
        return env

    def mount_set(self) -> frozenset[tuple[str, str]]:
        """Return mount bindings as an order-insensitive set."""
        return frozenset((m.disk_name, m.mount_point) for m in self.mounts)


Resource = Annotated[Disk | StorageNode | Machine, Field(discriminator="kind")]


def identity_key(resource: Disk | StorageNode | Machine) -> tuple[str, ...]:
    """Return the key a resource is matched on against recorded state.

    Machines are keyed on name and image so that reusing a name with another
    image is treated as a distinct entity.
    """
    if isinstance(resource, Machine):
        return (resource.kind, resource.name, resource.flist)
    return (resource.kind, resource.name)
