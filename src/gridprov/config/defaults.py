"""Default provisioning constants for gridprov."""

import logging

logger = logging.getLogger(__name__)


# Remote call and polling budgets, in seconds
DEFAULT_TIMEOUTS: dict[str, float] = {
    "deployment_timeout": 30,  # single VM deployment calls
    "network_timeout": 80,  # per-node network calls
    "poll_timeout": 240,  # wait-for-completion budget
    "poll_interval": 1,  # delay between agent fetches
}

# Listen port sampling range [low, high) and attempt cap
PORT_RANGE_LOW = 2000
PORT_RANGE_HIGH = 8000
PORT_MAX_ATTEMPTS = 1000

# Host ids handed out inside a /24: .0/.1 network/gateway, .255 broadcast
FIRST_HOST_ID = 2
LAST_HOST_ID = 254

# Network subnet layout inside the /16 network range
ACCESS_SUBNET_OCTET = 2
FIRST_NODE_SUBNET_OCTET = 3
NODE_SUBNET_PREFIX = 24

# Overlay addressing and access configuration
OVERLAY_RANGE = "100.64.0.0/16"
OVERLAY_FIRST_OCTET = 100
OVERLAY_SECOND_OCTET = 64
PERSISTENT_KEEPALIVE = 25

# Sentinel used for nodes that have no version / contract yet
UNPROVISIONED = -1

# Unit multipliers for workload payloads
GIGABYTE = 1024**3
MEGABYTE = 1024**2

MIN_MACHINE_MEMORY_MB = 256

STATE_VERSION = "1.0"
STATE_DIR = ".gridprov"
STATE_FILE = "state.json"
