"""Unit tests for the workload builder."""

from __future__ import annotations

import pytest

from gridprov.config.defaults import GIGABYTE, MEGABYTE
from gridprov.lib.errors import InvalidResourceError
from gridprov.models.resources import (
    Disk,
    EnvVar,
    Machine,
    MountBinding,
    StorageNode,
    ZdbMode,
)
from gridprov.models.workload import MachineData, Peer, WorkloadType, ZdbData
from gridprov.provision.workloads import (
    build_disk_workload,
    build_machine_workload,
    build_network_workload,
    build_workloads,
    build_zdb_workload,
)

FLIST = "https://hub.grid.tf/tf-official-apps/base:latest.flist"


def _machine(**overrides: object) -> Machine:
    values: dict[str, object] = {"name": "vm", "flist": FLIST, "ip": "10.1.3.2"}
    values.update(overrides)
    return Machine(**values)


class TestSingleWorkloads:
    """Tests for per-kind workload builders."""

    def test_disk_workload(self) -> None:
        """Disk sizes are converted to bytes."""
        workload = build_disk_workload(Disk(name="data", size_gb=10, description="d"), 2)

        assert workload.type == WorkloadType.ZMOUNT
        assert workload.version == 2
        assert workload.description == "d"
        assert workload.data.size_bytes == 10 * GIGABYTE

    def test_disk_requires_positive_size(self) -> None:
        """Zero-sized disks are rejected."""
        with pytest.raises(InvalidResourceError, match="size must be positive"):
            build_disk_workload(Disk(name="data", size_gb=0), 0)

    def test_zdb_uses_given_ciphertext(self) -> None:
        """The builder embeds the ciphertext it is handed."""
        zdb = StorageNode(name="kv", size_gb=1, password="secret", mode=ZdbMode.SEQ)

        workload = build_zdb_workload(zdb, 0, "deadbeef")

        assert isinstance(workload.data, ZdbData)
        assert workload.data.password == "deadbeef"
        assert workload.data.mode == "seq"

    def test_zdb_password_must_be_encrypted(self) -> None:
        """A password without ciphertext is rejected."""
        zdb = StorageNode(name="kv", size_gb=1, password="secret")

        with pytest.raises(InvalidResourceError, match="not encrypted"):
            build_zdb_workload(zdb, 0, "")

    def test_machine_workload(self) -> None:
        """Machines carry capacity, network attachment, mounts and env."""
        machine = _machine(
            cpu=2,
            memory_mb=2048,
            entrypoint="/sbin/zinit init",
            mounts=[MountBinding(disk_name="data", mount_point="/data")],
            env_vars=[EnvVar(key="A", value="1"), EnvVar(key="A", value="2")],
        )

        workload = build_machine_workload(machine, 1, "net1", ["data"])

        assert workload.type == WorkloadType.ZMACHINE
        data = workload.data
        assert isinstance(data, MachineData)
        assert data.capacity.cpu == 2
        assert data.capacity.memory_bytes == 2048 * MEGABYTE
        assert data.network.interfaces[0].network == "net1"
        assert data.network.interfaces[0].ip == "10.1.3.2"
        assert data.mounts[0].name == "data"
        assert data.mounts[0].mountpoint == "/data"
        assert data.env == {"A": "2"}

    def test_mount_of_unknown_disk(self) -> None:
        """Mounts must reference disks of the same deployment."""
        machine = _machine(mounts=[MountBinding(disk_name="ghost", mount_point="/g")])

        with pytest.raises(InvalidResourceError, match="unknown disk 'ghost'"):
            build_machine_workload(machine, 0, "net1", ["data"])

    def test_disk_mounted_twice(self) -> None:
        """A disk can only be mounted once per machine."""
        machine = _machine(
            mounts=[
                MountBinding(disk_name="data", mount_point="/a"),
                MountBinding(disk_name="data", mount_point="/b"),
            ]
        )

        with pytest.raises(InvalidResourceError, match="mounted more than once"):
            build_machine_workload(machine, 0, "net1", ["data"])

    @pytest.mark.parametrize(
        "overrides,match",
        [
            ({"flist": ""}, "flist is required"),
            ({"cpu": 0}, "at least one cpu"),
            ({"memory_mb": 128}, "not enough memory"),
            ({"ip": None}, "no private address"),
            ({"name": ""}, "name is required"),
        ],
    )
    def test_machine_required_fields(self, overrides: dict[str, object], match: str) -> None:
        """Missing or too small machine fields are rejected."""
        with pytest.raises(InvalidResourceError, match=match):
            build_machine_workload(_machine(**overrides), 0, "net1", [])

    def test_network_workload(self) -> None:
        """Network workloads carry the interface and peers."""
        peer = Peer(subnet="10.1.4.0/24", wg_public_key="pk", allowed_ips=("10.1.4.0/24",))

        workload = build_network_workload(
            "net1", 0, "", "10.1.0.0/16", "10.1.3.0/24", "sk", 3000, [peer]
        )

        assert workload.type == WorkloadType.NETWORK
        assert workload.data.peers == (peer,)
        assert workload.data.wg_listen_port == 3000


class TestBuildWorkloads:
    """Tests for assembling the workloads of a deployment."""

    def test_builds_every_resource(self) -> None:
        """Disks, storage nodes and machines are built in that order."""
        workloads = build_workloads(
            disks=[Disk(name="data", size_gb=1)],
            zdbs=[StorageNode(name="kv", size_gb=1, password="pw")],
            machines=[_machine(mounts=[MountBinding(disk_name="data", mount_point="/d")])],
            versions={"data": 0, "kv": 1, "vm": 2},
            encrypted_passwords={"kv": "7770"},
            network_name="net1",
        )

        assert [(w.name, w.type, w.version) for w in workloads] == [
            ("data", WorkloadType.ZMOUNT, 0),
            ("kv", WorkloadType.ZDB, 1),
            ("vm", WorkloadType.ZMACHINE, 2),
        ]

    def test_duplicate_names_across_kinds(self) -> None:
        """Names are unique across the whole deployment."""
        with pytest.raises(InvalidResourceError, match="unique"):
            build_workloads(
                disks=[Disk(name="same", size_gb=1)],
                zdbs=[],
                machines=[_machine(name="same")],
                versions={"same": 0},
                encrypted_passwords={},
                network_name="net1",
            )
