"""Reconcilers applying declared deployments and networks.

A reconciler takes a declared deployment or network and its last recorded
state, works out versions and allocations, builds and signs deployments and
drives them through the lifecycle controller. It returns the record the caller
persists for the next run; the optional ``persist`` callback receives interim
records as soon as a contract exists.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Callable, Sequence
from typing import TypeVar

from gridprov.config.defaults import (
    FIRST_HOST_ID,
    GIGABYTE,
    LAST_HOST_ID,
    MEGABYTE,
    UNPROVISIONED,
)
from gridprov.config.settings import ProvisionerSettings
from gridprov.lib.errors import InvalidResourceError, ValidationError
from gridprov.lib.logging_config import get_logger
from gridprov.models.manifest import DeploymentSpec, NetworkSpec
from gridprov.models.network import (
    KeyPair,
    NetworkConfiguration,
    NodeDeploymentRecord,
    NodeRecordStatus,
)
from gridprov.models.resources import (
    Disk,
    EnvVar,
    Machine,
    MountBinding,
    StorageNode,
    ZdbMode,
    identity_key,
)
from gridprov.models.state import DeploymentStateRecord, NetworkStateRecord
from gridprov.models.workload import (
    Deployment,
    MachineData,
    SignatureRequirement,
    Workload,
    ZdbData,
    ZMountData,
)
from gridprov.provision.allocator import PortAllocator, access_subnet, allocate_subnet, get_free_ip
from gridprov.provision.clients import IdentityProvider, NodeDirectory
from gridprov.provision.diff import (
    ChangeAction,
    ResourceChange,
    diff_resource,
    next_version,
    plan_resources,
)
from gridprov.provision.identity import generate_wg_keypair
from gridprov.provision.lifecycle import DeploymentController, NodeState
from gridprov.provision.topology import TopologyGenerator
from gridprov.provision.workloads import build_workloads

logger = get_logger(__name__)

ResourceT = TypeVar("ResourceT", Disk, StorageNode, Machine)

DeploymentPersist = Callable[[DeploymentStateRecord], None]
NetworkPersist = Callable[[NetworkStateRecord], None]


def recorded_state(status: NodeRecordStatus) -> NodeState:
    """Map a recorded status onto the lifecycle state it resumes from."""
    if status == NodeRecordStatus.DEPLOYED:
        return NodeState.DEPLOYED
    return NodeState.FAILED


def deployment_fields_changed(spec: DeploymentSpec, record: DeploymentStateRecord) -> bool:
    """Return True when the network, subnet or description differ from the record."""
    return (
        spec.network_name != record.network_name
        or spec.ip_range != record.ip_range
        or spec.description != record.description
    )


def network_in_sync(spec: NetworkSpec, record: NetworkStateRecord) -> bool:
    """Return True when a recorded network already matches its declaration.

    Every recorded node must be deployed on a contract; a pending or
    unprovisioned node always needs another pass.
    """
    return (
        sorted(n.node_id for n in record.nodes) == sorted(spec.nodes)
        and spec.ip_range == record.ip_range
        and spec.description == record.description
        and spec.public_node_id == record.public_node_id
        and spec.public_endpoint_ip == record.public_endpoint_ip
        and all(
            n.status == NodeRecordStatus.DEPLOYED and n.contract_id > 0
            for n in record.nodes
        )
    )


def plan_deployment(
    spec: DeploymentSpec, record: DeploymentStateRecord | None
) -> list[ResourceChange]:
    """Plan the resource changes of a VM deployment without applying them."""
    changes: list[ResourceChange] = []
    changes.extend(plan_resources(spec.disks, record.disks if record else []))
    changes.extend(plan_resources(spec.zdbs, record.zdbs if record else []))
    changes.extend(plan_resources(spec.machines, record.machines if record else []))
    return changes


def plan_network(
    spec: NetworkSpec, record: NetworkStateRecord | None
) -> list[tuple[int, ChangeAction]]:
    """Plan which nodes join, stay in or leave a network."""
    recorded = [n.node_id for n in record.nodes] if record else []
    retained = (
        ChangeAction.UNCHANGED
        if record is not None and network_in_sync(spec, record)
        else ChangeAction.CHANGE
    )
    changes = [
        (node_id, retained if node_id in recorded else ChangeAction.ADD)
        for node_id in spec.nodes
    ]
    changes.extend(
        (node_id, ChangeAction.REMOVE) for node_id in recorded if node_id not in spec.nodes
    )
    return changes


class DeploymentReconciler:
    """Creates, updates and deletes VM deployments on a single node."""

    def __init__(
        self,
        controller: DeploymentController,
        identity: IdentityProvider,
        settings: ProvisionerSettings | None = None,
    ) -> None:
        self._controller = controller
        self._identity = identity
        self._settings = settings or ProvisionerSettings()

    def create(
        self, spec: DeploymentSpec, persist: DeploymentPersist | None = None
    ) -> DeploymentStateRecord:
        """Apply a deployment that has no recorded state.

        Every resource starts at version 0. ``persist`` receives a pending
        record as soon as the contract exists, so an interrupted run resumes
        on that contract instead of creating another one.
        """
        disks = [d.model_copy(update={"version": 0}) for d in spec.disks]
        zdbs = [z.model_copy(update={"version": 0}) for z in spec.zdbs]
        machines, used_ips = self._assign_ips(spec, [], [])
        machines = [m.model_copy(update={"version": 0}) for m in machines]

        deployment = self._build(spec, 0, disks, zdbs, machines)
        record = DeploymentStateRecord(
            node_id=spec.node_id,
            contract_id=UNPROVISIONED,
            version=0,
            network_name=spec.network_name,
            ip_range=spec.ip_range,
            description=spec.description,
            disks=disks,
            zdbs=zdbs,
            machines=machines,
            used_ips=used_ips,
            status=NodeRecordStatus.PENDING,
        )

        def mark_pending(contract_id: int) -> None:
            if persist is not None:
                persist(record.model_copy(update={"contract_id": contract_id}))

        logger.info(f"Creating deployment '{spec.name}' on node {spec.node_id}")
        self._controller.restore(spec.node_id, NodeState.ABSENT)
        contract_id = self._controller.create(
            spec.node_id,
            deployment,
            timeout=self._settings.deployment_timeout,
            on_contract=mark_pending,
        )
        return record.model_copy(
            update={"contract_id": contract_id, "status": NodeRecordStatus.DEPLOYED}
        )

    def update(
        self,
        spec: DeploymentSpec,
        record: DeploymentStateRecord,
        persist: DeploymentPersist | None = None,
    ) -> DeploymentStateRecord:
        """Apply the differences between a declared deployment and its record.

        Resource versions follow the diff; the deployment version goes up by
        exactly one. Machines keep their recorded addresses unless the subnet
        changed, and addresses of removed machines are released. A deployment
        without any change is left alone.

        Raises:
            ValidationError: If the deployment would move to another node
        """
        if spec.node_id != record.node_id:
            raise ValidationError(
                field=f"deployments.{spec.name}.node_id",
                message="moving a deployment to another node is not supported",
                expected=str(record.node_id),
                actual=str(spec.node_id),
            )
        if record.contract_id <= 0:
            logger.info(f"Deployment '{spec.name}' has no contract yet, creating it")
            return self.create(spec, persist)

        pending = record.status == NodeRecordStatus.PENDING
        changes = plan_deployment(spec, record)
        unchanged = all(c.action == ChangeAction.UNCHANGED for c in changes)
        if not pending and unchanged and not deployment_fields_changed(spec, record):
            logger.info(f"Deployment '{spec.name}' is up to date")
            return record

        disks = [self._versioned(d, record.disks) for d in spec.disks]
        zdbs = [self._versioned(z, record.zdbs) for z in spec.zdbs]
        machines, used_ips = self._assign_ips(spec, record.machines, record.used_ips)
        machines = [self._versioned(m, record.machines) for m in machines]

        for change in changes:
            if change.action == ChangeAction.REMOVE:
                logger.info(f"Removing {change.kind} '{change.name}' from '{spec.name}'")

        version = record.version + 1
        deployment = self._build(spec, version, disks, zdbs, machines)
        self._controller.restore(spec.node_id, recorded_state(record.status))
        contract_id = self._controller.update(
            spec.node_id,
            record.contract_id,
            deployment,
            timeout=self._settings.deployment_timeout,
            resubmit=pending,
        )
        return record.model_copy(
            update={
                "contract_id": contract_id,
                "version": version,
                "network_name": spec.network_name,
                "ip_range": spec.ip_range,
                "description": spec.description,
                "disks": disks,
                "zdbs": zdbs,
                "machines": machines,
                "used_ips": used_ips,
                "status": NodeRecordStatus.DEPLOYED,
            }
        )

    def delete(self, record: DeploymentStateRecord) -> None:
        """Cancel the deployment's contract and remove it from its node."""
        if record.contract_id <= 0:
            logger.info(f"Deployment on node {record.node_id} has no contract to cancel")
            return
        self._controller.restore(record.node_id, recorded_state(record.status))
        self._controller.cancel(
            record.node_id,
            record.contract_id,
            timeout=self._settings.deployment_timeout,
        )

    def refresh(self, record: DeploymentStateRecord) -> DeploymentStateRecord:
        """Rebuild a record from the deployment the node agent holds.

        Storage node passwords are only known in ciphertext remotely, so the
        recorded plain text values are kept.
        """
        deployment = self._controller.fetch(record.node_id, record.contract_id)
        passwords = {z.name: z.password for z in record.zdbs}
        disks: list[Disk] = []
        zdbs: list[StorageNode] = []
        machines: list[Machine] = []
        for workload in deployment.workloads:
            if isinstance(workload.data, ZMountData):
                disks.append(_disk_from(workload, workload.data))
            elif isinstance(workload.data, ZdbData):
                zdbs.append(_zdb_from(workload, workload.data, passwords.get(workload.name, "")))
            elif isinstance(workload.data, MachineData):
                machines.append(_machine_from(workload, workload.data))
        return record.model_copy(
            update={
                "version": deployment.version,
                "disks": disks,
                "zdbs": zdbs,
                "machines": machines,
                "used_ips": [m.ip for m in machines if m.ip],
            }
        )

    @staticmethod
    def _versioned(resource: ResourceT, prior_list: Sequence[ResourceT]) -> ResourceT:
        version = next_version(diff_resource(resource, prior_list))
        return resource.model_copy(update={"version": version})

    def _assign_ips(
        self,
        spec: DeploymentSpec,
        prior_machines: Sequence[Machine],
        prior_used: Sequence[str],
    ) -> tuple[list[Machine], list[str]]:
        """Give every declared machine an address.

        Declared addresses are checked against the subnet, the assignable
        host ids and other machines. Undeclared ones reuse the recorded
        address while it is still inside the subnet, or take the next free
        one.
        """
        network = ipaddress.IPv4Network(spec.ip_range, strict=False)
        # Addresses of machines that are no longer declared are released
        declared_keys = {identity_key(m) for m in spec.machines}
        released = {
            m.ip for m in prior_machines if m.ip and identity_key(m) not in declared_keys
        }
        used = [
            ip for ip in prior_used if ip not in released and _in_network(ip, network)
        ]
        declared_ips = {m.ip for m in spec.machines if m.ip}

        assigned: list[Machine] = []
        taken: set[str] = set()
        for machine in spec.machines:
            prior = diff_resource(machine, prior_machines).prior
            prior_ip = prior.ip if prior is not None else None
            if prior_ip and not _in_network(prior_ip, network):
                logger.info(
                    f"Machine '{machine.name}' leaves {prior_ip}, "
                    f"which is outside {spec.ip_range}"
                )
                prior_ip = None
            if machine.ip:
                ip = machine.ip
                if not _in_network(ip, network):
                    raise InvalidResourceError(
                        resource=machine.name,
                        message="address is outside the deployment subnet",
                        expected=spec.ip_range,
                        actual=ip,
                    )
                if not _assignable(ip):
                    raise InvalidResourceError(
                        resource=machine.name,
                        message="address is reserved for the network, gateway or broadcast",
                        expected=f"host id {FIRST_HOST_ID}..{LAST_HOST_ID}",
                        actual=ip,
                    )
                if ip in taken or (ip != prior_ip and ip in used):
                    raise InvalidResourceError(
                        resource=machine.name,
                        message="address is already assigned",
                        expected="an unused address",
                        actual=ip,
                    )
                if prior_ip and prior_ip != ip and prior_ip in used:
                    used.remove(prior_ip)
            elif prior_ip:
                ip = prior_ip
            else:
                ip = get_free_ip(spec.ip_range, [*used, *taken, *declared_ips])
            taken.add(ip)
            if ip not in used:
                used.append(ip)
            assigned.append(machine.model_copy(update={"ip": ip}))
        return assigned, used

    def _build(
        self,
        spec: DeploymentSpec,
        version: int,
        disks: list[Disk],
        zdbs: list[StorageNode],
        machines: list[Machine],
    ) -> Deployment:
        versions = {r.name: r.version or 0 for r in (*disks, *zdbs, *machines)}
        passwords = {
            z.name: self._identity.encrypt_for(z.password) for z in zdbs if z.password
        }
        deployment = Deployment(
            version=version,
            twin_id=self._identity.twin_id,
            description=spec.description,
            workloads=build_workloads(
                disks, zdbs, machines, versions, passwords, spec.network_name
            ),
            signature_requirement=SignatureRequirement.single(self._identity.twin_id),
        )
        deployment.validate_structure()
        deployment.sign(self._identity.twin_id, self._identity)
        return deployment


def _in_network(ip: str, network: ipaddress.IPv4Network) -> bool:
    try:
        return ipaddress.IPv4Address(ip) in network
    except ValueError:
        return False


def _assignable(ip: str) -> bool:
    host_id = ipaddress.IPv4Address(ip).packed[3]
    return FIRST_HOST_ID <= host_id <= LAST_HOST_ID


def _disk_from(workload: Workload, data: ZMountData) -> Disk:
    return Disk(
        name=workload.name,
        size_gb=data.size_bytes // GIGABYTE,
        description=workload.description,
        version=workload.version,
    )


def _zdb_from(workload: Workload, data: ZdbData, password: str) -> StorageNode:
    return StorageNode(
        name=workload.name,
        size_gb=data.size_bytes // GIGABYTE,
        description=workload.description,
        password=password,
        mode=ZdbMode(data.mode),
        version=workload.version,
    )


def _machine_from(workload: Workload, data: MachineData) -> Machine:
    interfaces = data.network.interfaces
    return Machine(
        name=workload.name,
        flist=data.flist,
        cpu=data.capacity.cpu,
        memory_mb=data.capacity.memory_bytes // MEGABYTE,
        entrypoint=data.entrypoint,
        description=workload.description,
        mounts=[MountBinding(disk_name=m.name, mount_point=m.mountpoint) for m in data.mounts],
        env_vars=[EnvVar(key=k, value=v) for k, v in data.env.items()],
        ip=interfaces[0].ip if interfaces else None,
        version=workload.version,
    )


class NetworkReconciler:
    """Creates, updates and deletes full-mesh private networks."""

    def __init__(
        self,
        controller: DeploymentController,
        directory: NodeDirectory,
        identity: IdentityProvider,
        ports: PortAllocator,
        settings: ProvisionerSettings | None = None,
        keygen: Callable[[], KeyPair] = generate_wg_keypair,
    ) -> None:
        self._controller = controller
        self._generator = TopologyGenerator(directory, identity)
        self._ports = ports
        self._settings = settings or ProvisionerSettings()
        self._keygen = keygen

    def create(
        self, spec: NetworkSpec, persist: NetworkPersist | None = None
    ) -> NetworkStateRecord:
        """Apply a network that has no recorded state."""
        return self._apply(spec, None, persist)

    def update(
        self,
        spec: NetworkSpec,
        record: NetworkStateRecord,
        persist: NetworkPersist | None = None,
    ) -> NetworkStateRecord:
        """Bring a recorded network in line with its declaration.

        Added nodes get a subnet, key pair and port; retained nodes keep
        theirs and are redeployed with the regenerated peer list; removed
        nodes are cancelled once every declared node has been applied. A
        network that already matches its declaration is returned untouched.

        Raises:
            ValidationError: If the network range changed
        """
        if spec.ip_range != record.ip_range:
            raise ValidationError(
                field=f"networks.{spec.name}.ip_range",
                message="changing the range of an existing network is not supported",
                expected=record.ip_range,
                actual=spec.ip_range,
            )
        if network_in_sync(spec, record):
            logger.info(f"Network '{spec.name}' is up to date")
            return record
        return self._apply(spec, record, persist)

    def delete(self, record: NetworkStateRecord) -> None:
        """Cancel the contract of every node of a network."""
        for node in record.nodes:
            if node.contract_id > 0:
                self._controller.restore(node.node_id, recorded_state(node.status))
                self._controller.cancel(
                    node.node_id, node.contract_id, timeout=self._settings.network_timeout
                )

    def _apply(
        self,
        spec: NetworkSpec,
        record: NetworkStateRecord | None,
        persist: NetworkPersist | None,
    ) -> NetworkStateRecord:
        prior_nodes = {n.node_id: n for n in record.nodes} if record else {}
        config = self._configuration(spec, record)
        records = self._allocate(spec, config, prior_nodes)
        topology = self._generator.generate(config)

        state = NetworkStateRecord(
            name=spec.name,
            description=spec.description,
            ip_range=spec.ip_range,
            public_node_id=spec.public_node_id,
            public_endpoint_ip=spec.public_endpoint_ip,
            external_subnet=config.external_subnet,
            external_private_key=config.external_key.private_key if config.external_key else None,
            external_public_key=config.external_key.public_key if config.external_key else None,
            access_config=topology.access_config,
            created_at=record.created_at if record else None,
            updated_at=record.updated_at if record else None,
        )

        def snapshot() -> NetworkStateRecord:
            return state.model_copy(update={"nodes": list(records.values())})

        def save() -> None:
            if persist is not None:
                persist(snapshot())

        timeout = self._settings.network_timeout
        for node_id, deployment in topology.deployments.items():
            node = records[node_id]
            if node.contract_id <= 0:

                def mark_pending(contract_id: int, node_id: int = node_id) -> None:
                    records[node_id] = records[node_id].model_copy(
                        update={"contract_id": contract_id, "status": NodeRecordStatus.PENDING}
                    )
                    save()

                self._controller.restore(node_id, NodeState.ABSENT)
                contract_id = self._controller.create(
                    node_id, deployment, timeout=timeout, on_contract=mark_pending
                )
            else:
                self._controller.restore(node_id, recorded_state(node.status))
                contract_id = self._controller.update(
                    node_id,
                    node.contract_id,
                    deployment,
                    timeout=timeout,
                    resubmit=node.status == NodeRecordStatus.PENDING,
                )
            records[node_id] = records[node_id].model_copy(
                update={
                    "contract_id": contract_id,
                    "version": deployment.version,
                    "status": NodeRecordStatus.DEPLOYED,
                }
            )
            save()

        for node_id in [n for n in records if n not in spec.nodes]:
            node = records[node_id]
            if node.contract_id > 0:
                self._controller.restore(node_id, recorded_state(node.status))
                self._controller.cancel(node_id, node.contract_id, timeout=timeout)
            del records[node_id]
            save()

        return snapshot()

    def _configuration(
        self, spec: NetworkSpec, record: NetworkStateRecord | None
    ) -> NetworkConfiguration:
        config = NetworkConfiguration(
            name=spec.name,
            description=spec.description,
            ip_range=spec.ip_range,
            node_ids=list(spec.nodes),
            public_node_id=spec.public_node_id,
            public_endpoint_ip=spec.public_endpoint_ip,
        )
        if record is None:
            return config

        for node in record.nodes:
            config.keys[node.node_id] = node.key_pair
            config.subnets[node.node_id] = node.subnet
            config.ports[node.node_id] = node.port
            config.versions[node.node_id] = node.version
            config.contract_ids[node.node_id] = node.contract_id
        if record.external_subnet and record.external_private_key and record.external_public_key:
            config.external_subnet = record.external_subnet
            config.external_key = KeyPair(
                private_key=record.external_private_key,
                public_key=record.external_public_key,
            )
        return config

    def _allocate(
        self,
        spec: NetworkSpec,
        config: NetworkConfiguration,
        prior_nodes: dict[int, NodeDeploymentRecord],
    ) -> dict[int, NodeDeploymentRecord]:
        """Assign subnet, key pair and port to nodes joining the network.

        Returns the node records of this run: declared nodes in order, then
        recorded nodes about to be removed.
        """
        if spec.public_node_id is not None and config.external_subnet is None:
            config.external_subnet = access_subnet(spec.ip_range)
            config.external_key = self._keygen()
            logger.info(f"Reserved access subnet {config.external_subnet} for '{spec.name}'")

        used_subnets = list(config.subnets.values())
        if config.external_subnet:
            used_subnets.append(config.external_subnet)

        records: dict[int, NodeDeploymentRecord] = {}
        for node_id in spec.nodes:
            if node_id in prior_nodes:
                records[node_id] = prior_nodes[node_id]
                continue
            subnet = allocate_subnet(spec.ip_range, used_subnets)
            used_subnets.append(subnet)
            keys = self._keygen()
            port = self._ports.allocate(node_id)
            logger.info(f"Node {node_id} joins '{spec.name}' with subnet {subnet}, port {port}")
            config.subnets[node_id] = subnet
            config.keys[node_id] = keys
            config.ports[node_id] = port
            config.versions[node_id] = UNPROVISIONED
            config.contract_ids[node_id] = UNPROVISIONED
            records[node_id] = NodeDeploymentRecord(
                node_id=node_id,
                private_key=keys.private_key,
                public_key=keys.public_key,
                port=port,
                subnet=subnet,
            )

        for node_id, node in prior_nodes.items():
            if node_id not in records:
                records[node_id] = node
        return records
