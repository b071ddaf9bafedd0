"""Full-mesh topology generation for private overlay networks.

Every participating node peers with every other node. The node designated as
public additionally fronts an external access point: its peers route the
access subnet through it, and it carries a peer entry for the access point
itself. The access configuration handed to the external client is produced
from the public node's perspective.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field

from gridprov.config.defaults import (
    OVERLAY_FIRST_OCTET,
    OVERLAY_RANGE,
    OVERLAY_SECOND_OCTET,
    PERSISTENT_KEEPALIVE,
)
from gridprov.lib.errors import TopologyError
from gridprov.lib.logging_config import get_logger
from gridprov.models.network import KeyPair, NetworkConfiguration
from gridprov.models.workload import Deployment, Peer, SignatureRequirement
from gridprov.provision.clients import IdentityProvider, NodeDirectory
from gridprov.provision.workloads import build_network_workload

logger = get_logger(__name__)

ACCESS_CONFIG_TEMPLATE = """[Interface]
Address = {address}
PrivateKey = {private_key}

[Peer]
PublicKey = {peer_public_key}
AllowedIPs = {allowed_ips}
PersistentKeepalive = {keepalive}
Endpoint = {endpoint}
"""


@dataclass
class TopologyResult:
    """Output of one topology generation.

    Attributes:
        access_config: Client configuration for the external access point,
            empty when the network has no public node
        deployments: Signed deployment per node, in node order
    """

    access_config: str = ""
    deployments: dict[int, Deployment] = field(default_factory=dict)


def overlay_ip(subnet: str) -> str:
    """Return the overlay address of a node subnet.

    ``a.b.c.0/24`` maps to ``100.64.b.c/32``.
    """
    _, b, c, _ = ipaddress.IPv4Network(subnet, strict=False).network_address.packed
    return f"{OVERLAY_FIRST_OCTET}.{OVERLAY_SECOND_OCTET}.{b}.{c}/32"


def format_endpoint(address: str, port: int) -> str:
    """Join an address and port, bracketing IPv6 addresses."""
    try:
        parsed = ipaddress.ip_address(address)
    except ValueError:
        return f"{address}:{port}"
    if parsed.version == 6:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def generate_access_config(
    address: str,
    private_key: str,
    peer_public_key: str,
    endpoint: str,
    network_range: str,
    keepalive: int = PERSISTENT_KEEPALIVE,
) -> str:
    """Render the WireGuard client configuration of the access point."""
    return ACCESS_CONFIG_TEMPLATE.format(
        address=address,
        private_key=private_key,
        peer_public_key=peer_public_key,
        allowed_ips=f"{network_range}, {OVERLAY_RANGE}",
        keepalive=keepalive,
        endpoint=endpoint,
    )


class TopologyGenerator:
    """Builds the per-node network deployments of a mesh."""

    def __init__(self, directory: NodeDirectory, identity: IdentityProvider) -> None:
        self._directory = directory
        self._identity = identity

    def generate(self, config: NetworkConfiguration) -> TopologyResult:
        """Generate one signed deployment per node plus the access configuration.

        Each deployment is versioned one above the node's recorded version
        (0 for a node without one). Any validation or signing failure aborts
        the whole generation.

        Raises:
            TopologyError: If the configuration is incomplete or inconsistent
            ValidationError: If a generated deployment is invalid
        """
        access_point = self._check(config)
        result = TopologyResult()

        for node_id in config.node_ids:
            peers = [
                self._peer(config, neighbour)
                for neighbour in config.node_ids
                if neighbour != node_id
            ]

            if access_point is not None and node_id == config.public_node_id:
                subnet, key = access_point
                result.access_config = self._access_config(config, node_id, subnet, key)
                peers.append(self._access_peer(subnet, key))

            version = config.version_of(node_id) + 1
            workload = build_network_workload(
                name=config.name,
                version=version,
                description=config.description,
                ip_range=config.ip_range,
                subnet=config.subnets[node_id],
                private_key=config.keys[node_id].private_key,
                listen_port=config.ports[node_id],
                peers=peers,
            )
            deployment = Deployment(
                version=version,
                twin_id=self._identity.twin_id,
                description=config.description,
                workloads=[workload],
                signature_requirement=SignatureRequirement.single(
                    self._identity.twin_id
                ),
            )
            deployment.validate_structure()
            deployment.sign(self._identity.twin_id, self._identity)
            logger.debug(
                f"Generated network deployment for node {node_id} "
                f"(version {version}, {len(peers)} peers)"
            )
            result.deployments[node_id] = deployment

        return result

    def _check(self, config: NetworkConfiguration) -> tuple[str, KeyPair] | None:
        """Validate the configuration and return the access subnet and key pair."""
        for node_id in config.node_ids:
            missing = [
                label
                for label, table in (
                    ("subnet", config.subnets),
                    ("port", config.ports),
                    ("key pair", config.keys),
                )
                if node_id not in table
            ]
            if missing:
                raise TopologyError(
                    f"node {node_id} has no {', '.join(missing)} assigned",
                    actual=str(node_id),
                )

        public = config.public_node_id
        access_point: tuple[str, KeyPair] | None = None
        if public is not None:
            if public not in config.node_ids:
                raise TopologyError(
                    f"public node {public} is not part of the network",
                    actual=str(config.node_ids),
                )
            if config.external_subnet is None or config.external_key is None:
                raise TopologyError(
                    "public node set without an access subnet and key pair",
                    actual=str(public),
                )
            access_point = (config.external_subnet, config.external_key)
        config.check_disjoint()
        return access_point

    def _peer(self, config: NetworkConfiguration, node_id: int) -> Peer:
        subnet = config.subnets[node_id]
        allowed_ips = [subnet, overlay_ip(subnet)]
        if node_id == config.public_node_id and config.external_subnet:
            allowed_ips.extend(
                [config.external_subnet, overlay_ip(config.external_subnet)]
            )
        return Peer(
            subnet=subnet,
            wg_public_key=config.keys[node_id].public_key,
            allowed_ips=tuple(allowed_ips),
            endpoint=format_endpoint(
                self._directory.resolve(node_id), config.ports[node_id]
            ),
        )

    def _access_peer(self, subnet: str, key: KeyPair) -> Peer:
        # The access point dials in, so it has no endpoint
        return Peer(
            subnet=subnet,
            wg_public_key=key.public_key,
            allowed_ips=(subnet, overlay_ip(subnet)),
        )

    def _access_config(
        self, config: NetworkConfiguration, node_id: int, subnet: str, key: KeyPair
    ) -> str:
        endpoint_ip = config.public_endpoint_ip or self._directory.resolve(node_id)
        return generate_access_config(
            address=overlay_ip(subnet).split("/")[0],
            private_key=key.private_key,
            peer_public_key=config.keys[node_id].public_key,
            endpoint=format_endpoint(endpoint_ip, config.ports[node_id]),
            network_range=config.ip_range,
        )
