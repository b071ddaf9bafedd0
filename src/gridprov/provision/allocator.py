"""Allocation of addresses, subnets and listen ports.

All allocators are idempotent from the caller's perspective: entities that
already carry an assignment in recorded state keep it, and only new entities
are passed through here.
"""

from __future__ import annotations

import ipaddress
import random
from collections.abc import Iterable

from gridprov.config.defaults import (
    ACCESS_SUBNET_OCTET,
    FIRST_HOST_ID,
    FIRST_NODE_SUBNET_OCTET,
    LAST_HOST_ID,
    NODE_SUBNET_PREFIX,
    PORT_MAX_ATTEMPTS,
    PORT_RANGE_HIGH,
    PORT_RANGE_LOW,
)
from gridprov.config.settings import ProvisionerSettings
from gridprov.lib.errors import AddressSpaceExhaustedError, PortAllocationError
from gridprov.lib.logging_config import get_logger
from gridprov.provision.clients import NodeAgentClient

logger = get_logger(__name__)


def get_free_ip(ip_range: str, used_ips: Iterable[str]) -> str:
    """Return the first free host address of a subnet.

    Host ids 2..254 of the subnet's first three octets are scanned in order;
    .0/.1 (network and gateway) and .255 (broadcast) are never handed out.

    Args:
        ip_range: Subnet such as ``10.1.3.0/24``
        used_ips: Dotted addresses already assigned

    Returns:
        The dotted address, e.g. ``10.1.3.2``.

    Raises:
        AddressSpaceExhaustedError: If every host id is taken
    """
    network = ipaddress.IPv4Network(ip_range, strict=False)
    a, b, c, _ = network.network_address.packed
    used = set(used_ips)
    for host_id in range(FIRST_HOST_ID, LAST_HOST_ID + 1):
        candidate = f"{a}.{b}.{c}.{host_id}"
        if candidate not in used:
            logger.debug(f"Selected address {candidate} in {ip_range}")
            return candidate
    raise AddressSpaceExhaustedError(ip_range)


def as_host_interface(ip: str) -> str:
    """Return the point-to-point (/32) form of a dotted address."""
    return str(ipaddress.IPv4Interface(f"{ip}/32"))


def _subnet(network_range: str, third_octet: int) -> str:
    network = ipaddress.IPv4Network(network_range, strict=False)
    a, b, _, _ = network.network_address.packed
    return f"{a}.{b}.{third_octet}.0/{NODE_SUBNET_PREFIX}"


def access_subnet(network_range: str) -> str:
    """Return the subnet reserved for the external access point."""
    return _subnet(network_range, ACCESS_SUBNET_OCTET)


def allocate_subnet(network_range: str, used_subnets: Iterable[str]) -> str:
    """Return the next free node subnet inside a network range.

    Node subnets are /24s whose third octet starts at 3; the octets of
    ``used_subnets`` (node subnets and the access subnet) are skipped.

    Raises:
        AddressSpaceExhaustedError: If no /24 is left
    """
    used_octets = {
        ipaddress.IPv4Network(s, strict=False).network_address.packed[2]
        for s in used_subnets
    }
    for octet in range(FIRST_NODE_SUBNET_OCTET, 256):
        if octet not in used_octets:
            return _subnet(network_range, octet)
    raise AddressSpaceExhaustedError(
        network_range, f"No free /{NODE_SUBNET_PREFIX} subnet left in {network_range}"
    )


class PortAllocator:
    """Picks listen ports not reserved on a node.

    Ports are sampled uniformly from ``[low, high)`` until one is not in the
    node's reserved list. Sampling is capped so that a saturated node fails
    instead of looping forever. Two runs targeting the same node concurrently
    may still pick the same port; nothing here guards against that.
    """

    def __init__(
        self,
        agent: NodeAgentClient,
        rng: random.Random | None = None,
        low: int = PORT_RANGE_LOW,
        high: int = PORT_RANGE_HIGH,
        max_attempts: int = PORT_MAX_ATTEMPTS,
    ) -> None:
        self._agent = agent
        self._rng = rng or random.Random()  # nosec B311
        self._low = low
        self._high = high
        self._max_attempts = max_attempts

    @classmethod
    def from_settings(
        cls,
        agent: NodeAgentClient,
        settings: ProvisionerSettings,
        rng: random.Random | None = None,
    ) -> PortAllocator:
        """Build an allocator using the port range and cap of ``settings``."""
        return cls(
            agent,
            rng=rng,
            low=settings.port_low,
            high=settings.port_high,
            max_attempts=settings.port_max_attempts,
        )

    def allocate(self, node_id: int, exclude: Iterable[int] = ()) -> int:
        """Return a free listen port on ``node_id``.

        Args:
            node_id: Node to allocate on
            exclude: Extra ports to avoid, e.g. ones picked earlier in this run

        Raises:
            PortAllocationError: If the attempt cap is reached
        """
        reserved = set(self._agent.list_reserved_ports(node_id))
        reserved.update(exclude)
        logger.debug(f"Reserved ports for node {node_id}: {sorted(reserved)}")
        for _ in range(self._max_attempts):
            port = self._rng.randrange(self._low, self._high)
            if port not in reserved:
                logger.debug(f"Selected port {port} on node {node_id}")
                return port
        raise PortAllocationError(node_id, self._max_attempts)
