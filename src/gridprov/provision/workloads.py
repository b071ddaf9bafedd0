"""Workload builder turning declared resources into workload descriptors.

Builders are pure: the only external input is an already-encrypted storage
node password, produced by the identity collaborator. Cross-references
(machine mounts to disks) are validated here rather than left to the node
agent.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from gridprov.config.defaults import GIGABYTE, MEGABYTE, MIN_MACHINE_MEMORY_MB
from gridprov.lib.errors import InvalidResourceError
from gridprov.models.resources import Disk, Machine, StorageNode
from gridprov.models.workload import (
    MachineCapacity,
    MachineData,
    MachineInterface,
    MachineMount,
    MachineNetwork,
    NetworkData,
    Peer,
    Workload,
    WorkloadType,
    ZdbData,
    ZMountData,
)


def _require_name(name: str) -> None:
    if not name or not name.strip():
        raise InvalidResourceError(
            resource=repr(name),
            message="resource name is required",
            expected="a non-empty name",
            actual=repr(name),
        )


def _require_positive_size(name: str, size_gb: int) -> None:
    if size_gb <= 0:
        raise InvalidResourceError(
            resource=name,
            message="size must be positive",
            expected="size_gb > 0",
            actual=str(size_gb),
        )


def _require_version(name: str, version: int) -> None:
    if version < 0:
        raise InvalidResourceError(
            resource=name,
            message="workload version cannot be negative",
            expected=">= 0",
            actual=str(version),
        )


def build_disk_workload(disk: Disk, version: int) -> Workload:
    """Build the mount workload of a disk."""
    _require_name(disk.name)
    _require_positive_size(disk.name, disk.size_gb)
    _require_version(disk.name, version)
    return Workload(
        type=WorkloadType.ZMOUNT,
        name=disk.name,
        version=version,
        description=disk.description,
        data=ZMountData(size_bytes=disk.size_gb * GIGABYTE),
    )


def build_zdb_workload(zdb: StorageNode, version: int, encrypted_password: str) -> Workload:
    """Build the workload of a storage node.

    Args:
        zdb: Declared storage node
        version: Version to apply
        encrypted_password: Hex ciphertext of ``zdb.password``
    """
    _require_name(zdb.name)
    _require_positive_size(zdb.name, zdb.size_gb)
    _require_version(zdb.name, version)
    if zdb.password and not encrypted_password:
        raise InvalidResourceError(
            resource=zdb.name,
            message="storage node password was not encrypted",
            expected="hex ciphertext",
            actual="empty",
        )
    return Workload(
        type=WorkloadType.ZDB,
        name=zdb.name,
        version=version,
        description=zdb.description,
        data=ZdbData(
            size_bytes=zdb.size_gb * GIGABYTE,
            mode=zdb.mode.value,
            password=encrypted_password,
        ),
    )


def resolve_mounts(machine: Machine, disk_names: Iterable[str]) -> tuple[MachineMount, ...]:
    """Resolve a machine's mount bindings against the deployment's disks.

    Bindings keep their declared order.

    Raises:
        InvalidResourceError: If a binding names an unknown disk or a disk is
            mounted twice
    """
    known = set(disk_names)
    mounts: list[MachineMount] = []
    seen: set[str] = set()
    for binding in machine.mounts:
        if binding.disk_name not in known:
            raise InvalidResourceError(
                resource=machine.name,
                message=f"mount references unknown disk '{binding.disk_name}'",
                expected=f"one of {sorted(known)}",
                actual=binding.disk_name,
            )
        if binding.disk_name in seen:
            raise InvalidResourceError(
                resource=machine.name,
                message=f"disk '{binding.disk_name}' is mounted more than once",
                expected="each disk mounted once",
                actual=binding.disk_name,
            )
        seen.add(binding.disk_name)
        mounts.append(MachineMount(name=binding.disk_name, mountpoint=binding.mount_point))
    return tuple(mounts)


def build_machine_workload(
    machine: Machine,
    version: int,
    network_name: str,
    disk_names: Iterable[str],
) -> Workload:
    """Build the workload of a virtual machine.

    The machine must already carry its private address. Duplicate
    environment keys collapse to the last declared value.
    """
    _require_name(machine.name)
    _require_version(machine.name, version)
    if not machine.flist:
        raise InvalidResourceError(
            resource=machine.name,
            message="flist is required",
            expected="an image reference",
            actual="empty",
        )
    if machine.cpu < 1:
        raise InvalidResourceError(
            resource=machine.name,
            message="at least one cpu is required",
            expected="cpu >= 1",
            actual=str(machine.cpu),
        )
    if machine.memory_mb < MIN_MACHINE_MEMORY_MB:
        raise InvalidResourceError(
            resource=machine.name,
            message="not enough memory",
            expected=f"memory_mb >= {MIN_MACHINE_MEMORY_MB}",
            actual=str(machine.memory_mb),
        )
    if not machine.ip:
        raise InvalidResourceError(
            resource=machine.name,
            message="machine has no private address",
            expected="an assigned address",
            actual="none",
        )

    return Workload(
        type=WorkloadType.ZMACHINE,
        name=machine.name,
        version=version,
        description=machine.description,
        data=MachineData(
            flist=machine.flist,
            network=MachineNetwork(
                interfaces=(MachineInterface(network=network_name, ip=machine.ip),),
                planetary=True,
            ),
            capacity=MachineCapacity(
                cpu=machine.cpu, memory_bytes=machine.memory_mb * MEGABYTE
            ),
            entrypoint=machine.entrypoint,
            mounts=resolve_mounts(machine, disk_names),
            env=machine.env_mapping(),
        ),
    )


def build_network_workload(
    name: str,
    version: int,
    description: str,
    ip_range: str,
    subnet: str,
    private_key: str,
    listen_port: int,
    peers: Sequence[Peer],
) -> Workload:
    """Build the network workload of one node of a mesh."""
    _require_name(name)
    _require_version(name, version)
    return Workload(
        type=WorkloadType.NETWORK,
        name=name,
        version=version,
        description=description,
        data=NetworkData(
            ip_range=ip_range,
            subnet=subnet,
            wg_private_key=private_key,
            wg_listen_port=listen_port,
            peers=tuple(peers),
        ),
    )


def build_workloads(
    disks: Sequence[Disk],
    zdbs: Sequence[StorageNode],
    machines: Sequence[Machine],
    versions: Mapping[str, int],
    encrypted_passwords: Mapping[str, str],
    network_name: str,
) -> list[Workload]:
    """Build every workload of a VM deployment.

    Args:
        disks: Declared disks
        zdbs: Declared storage nodes
        machines: Declared machines, with addresses assigned
        versions: Version per resource name
        encrypted_passwords: Ciphertext per storage node name
        network_name: Network the machines join

    Raises:
        InvalidResourceError: If names collide across the deployment or any
            resource is invalid
    """
    names = [r.name for r in (*disks, *zdbs, *machines)]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidResourceError(
            resource=duplicates[0],
            message="resource names must be unique within a deployment",
            expected="unique names",
            actual=", ".join(duplicates),
        )

    disk_names = [d.name for d in disks]
    workloads = [build_disk_workload(d, versions[d.name]) for d in disks]
    workloads.extend(
        build_zdb_workload(z, versions[z.name], encrypted_passwords.get(z.name, ""))
        for z in zdbs
    )
    workloads.extend(
        build_machine_workload(m, versions[m.name], network_name, disk_names)
        for m in machines
    )
    return workloads
