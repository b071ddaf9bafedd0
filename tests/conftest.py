"""Pytest configuration and shared fixtures for gridprov tests.

The ledger, node agent and identity collaborators are replaced with
in-memory fakes that record every call, so tests can assert on the exact
sequence of remote operations.
"""

from __future__ import annotations

import random
from typing import Any

import pytest

from gridprov.config.settings import ProvisionerSettings
from gridprov.models.workload import Deployment, WorkloadResult
from gridprov.provision.allocator import PortAllocator
from gridprov.provision.clients import LedgerClient, NodeAgentClient, StaticNodeDirectory
from gridprov.provision.identity import Ed25519Identity
from gridprov.provision.lifecycle import DeploymentController

TWIN_ID = 7


class FakeLedger(LedgerClient):
    """Ledger handing out sequential contract ids."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.hashes: dict[int, str] = {}
        self.cancelled: list[int] = []
        self.fail: dict[str, Exception] = {}
        self._next_id = 100

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise self.fail[operation]

    def create_contract(self, twin_id: int, node_id: int, deployment_hash: str) -> int:
        self.calls.append(("create", twin_id, node_id, deployment_hash))
        self._maybe_fail("create")
        self._next_id += 1
        self.hashes[self._next_id] = deployment_hash
        return self._next_id

    def update_contract(self, twin_id: int, contract_id: int, deployment_hash: str) -> int:
        self.calls.append(("update", twin_id, contract_id, deployment_hash))
        self._maybe_fail("update")
        self.hashes[contract_id] = deployment_hash
        return contract_id

    def cancel_contract(self, twin_id: int, contract_id: int) -> None:
        self.calls.append(("cancel", twin_id, contract_id))
        self._maybe_fail("cancel")
        self.cancelled.append(contract_id)

    def resolve_node(self, node_id: int) -> int:
        self.calls.append(("resolve", node_id))
        self._maybe_fail("resolve")
        return 1000 + node_id

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] != "resolve"]


class FakeNodeAgent(NodeAgentClient):
    """Node agent keeping deployments in memory.

    Attributes:
        pending_polls: Number of fetches answered with empty (pending) results
            after each submission
        states: Terminal state reported per node, ``ok`` by default
        errors: Error text reported per node
        fail_nodes: Nodes whose submissions raise
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.deployments: dict[tuple[int, int], Deployment] = {}
        self.reserved_ports: dict[int, list[int]] = {}
        self.pending_polls = 0
        self.states: dict[int, str] = {}
        self.errors: dict[int, str] = {}
        self.fail_nodes: set[int] = set()
        self.fail_delete = False
        self._polls: dict[tuple[int, int], int] = {}

    def _store(self, operation: str, node_id: int, deployment: Deployment) -> None:
        self.calls.append((operation, node_id, deployment.contract_id))
        if node_id in self.fail_nodes:
            raise ConnectionError(f"node {node_id} unreachable")
        key = (node_id, deployment.contract_id)
        self.deployments[key] = deployment.model_copy(deep=True)
        self._polls[key] = 0

    def deploy(self, node_id: int, deployment: Deployment, *, timeout: float) -> None:
        self._store("deploy", node_id, deployment)

    def update(self, node_id: int, deployment: Deployment, *, timeout: float) -> None:
        self._store("update", node_id, deployment)

    def get(self, node_id: int, contract_id: int, *, timeout: float) -> Deployment:
        self.calls.append(("get", node_id, contract_id))
        key = (node_id, contract_id)
        deployment = self.deployments[key]
        self._polls[key] = self._polls.get(key, 0) + 1
        if self._polls[key] <= self.pending_polls:
            result = WorkloadResult()
        else:
            state = self.states.get(node_id, "ok")
            result = WorkloadResult(
                state=state, error=self.errors.get(node_id, "") if state != "ok" else ""
            )
        workloads = [w.model_copy(update={"result": result}) for w in deployment.workloads]
        return deployment.model_copy(update={"workloads": workloads})

    def delete(self, node_id: int, contract_id: int, *, timeout: float) -> None:
        self.calls.append(("delete", node_id, contract_id))
        if self.fail_delete:
            raise ConnectionError("agent went away")
        self.deployments.pop((node_id, contract_id), None)

    def list_reserved_ports(self, node_id: int) -> list[int]:
        return list(self.reserved_ports.get(node_id, []))

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] != "get"]

    def latest(self, node_id: int) -> Deployment:
        """Return the deployment most recently submitted to a node."""
        for operation, node, contract_id in reversed(self.calls):
            if node == node_id and operation in ("deploy", "update"):
                return self.deployments[(node, contract_id)]
        raise KeyError(node_id)


class FakeIdentity(Ed25519Identity):
    """Ed25519 identity with a reversible stand-in for field encryption."""

    def encrypt_for(self, secret: str) -> str:
        return secret[::-1].encode("utf-8").hex()


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def ledger() -> FakeLedger:
    """In-memory ledger."""
    return FakeLedger()


@pytest.fixture
def agent() -> FakeNodeAgent:
    """In-memory node agent."""
    return FakeNodeAgent()


@pytest.fixture
def identity() -> FakeIdentity:
    """Signing identity of the owning twin."""
    return FakeIdentity(TWIN_ID)


@pytest.fixture
def clock() -> FakeClock:
    """Clock advanced by the controller's sleeps."""
    return FakeClock()


@pytest.fixture
def settings() -> ProvisionerSettings:
    """Default settings with a short polling budget."""
    return ProvisionerSettings(poll_timeout=5, poll_interval=1)


@pytest.fixture
def directory() -> StaticNodeDirectory:
    """Addresses of the test nodes."""
    return StaticNodeDirectory(
        {1: "185.69.166.1", 2: "2a02:1802:5e::2", 3: "185.69.166.3", 4: "185.69.166.4"}
    )


@pytest.fixture
def controller(
    ledger: FakeLedger,
    agent: FakeNodeAgent,
    identity: FakeIdentity,
    settings: ProvisionerSettings,
    clock: FakeClock,
) -> DeploymentController:
    """Lifecycle controller wired to the fakes."""
    return DeploymentController(
        ledger, agent, identity, settings, clock=clock, sleep=clock.sleep
    )


@pytest.fixture
def ports(agent: FakeNodeAgent, settings: ProvisionerSettings) -> PortAllocator:
    """Port allocator configured from settings with a seeded random source."""
    return PortAllocator.from_settings(agent, settings, rng=random.Random(1234))
