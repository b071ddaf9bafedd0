"""Deployment lifecycle controller.

Sequences ledger contract calls with node agent submissions and waits for the
node agent to report a terminal state for every workload. Per node the
controller walks ``absent -> creating -> deployed -> updating -> deployed ->
cancelling -> absent``; ``failed`` is reachable from every transitional
state.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from gridprov.config.settings import ProvisionerSettings
from gridprov.lib.errors import (
    DeploymentTimeoutError,
    GridProvError,
    RemoteSubmitError,
    ValidationError,
    WorkloadFailedError,
)
from gridprov.lib.logging_config import get_logger
from gridprov.models.workload import Deployment, ResultState
from gridprov.provision.clients import IdentityProvider, LedgerClient, NodeAgentClient

logger = get_logger(__name__)

T = TypeVar("T")

ContractCallback = Callable[[int], None]


class NodeState(str, Enum):
    """Lifecycle state of the deployment on one node."""

    ABSENT = "absent"
    CREATING = "creating"
    DEPLOYED = "deployed"
    UPDATING = "updating"
    CANCELLING = "cancelling"
    FAILED = "failed"


_ALLOWED: dict[NodeState, set[NodeState]] = {
    NodeState.ABSENT: {NodeState.CREATING},
    NodeState.CREATING: {NodeState.DEPLOYED, NodeState.FAILED},
    NodeState.DEPLOYED: {NodeState.UPDATING, NodeState.CANCELLING},
    NodeState.UPDATING: {NodeState.DEPLOYED, NodeState.FAILED},
    NodeState.CANCELLING: {NodeState.ABSENT, NodeState.FAILED},
    # A failed node can be retried either way
    NodeState.FAILED: {NodeState.CREATING, NodeState.UPDATING, NodeState.CANCELLING},
}


class DeploymentController:
    """Drives create / update / cancel of deployments on nodes.

    Args:
        ledger: Contract registry collaborator
        agent: Node agent collaborator
        identity: Owning twin identity
        settings: Timeouts and polling budget
        clock: Monotonic clock, injectable for tests
        sleep: Delay function used between polls, injectable for tests
    """

    def __init__(
        self,
        ledger: LedgerClient,
        agent: NodeAgentClient,
        identity: IdentityProvider,
        settings: ProvisionerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._agent = agent
        self._identity = identity
        self._settings = settings or ProvisionerSettings()
        self._clock = clock
        self._sleep = sleep
        self.states: dict[int, NodeState] = {}

    def state_of(self, node_id: int) -> NodeState:
        return self.states.get(node_id, NodeState.ABSENT)

    def restore(self, node_id: int, state: NodeState) -> None:
        """Seed the state of a node from recorded state before acting on it."""
        self.states[node_id] = state

    def create(
        self,
        node_id: int,
        deployment: Deployment,
        *,
        timeout: float,
        on_contract: ContractCallback | None = None,
    ) -> int:
        """Create a contract for a deployment, submit it and wait for it.

        Args:
            node_id: Target node
            deployment: Validated and signed deployment
            timeout: Budget for each submission call, in seconds
            on_contract: Called with the contract id as soon as the ledger
                accepted it, before anything is sent to the node agent

        Returns:
            The contract id.
        """
        self._check_submittable(deployment)
        self._transition(node_id, NodeState.CREATING)
        try:
            self._resolve(node_id)
            deployment_hash = deployment.challenge_hash()
            logger.info(f"Creating contract on node {node_id} (hash {deployment_hash})")
            contract_id = self._remote(
                "create",
                node_id,
                None,
                lambda: self._ledger.create_contract(
                    self._identity.twin_id, node_id, deployment_hash
                ),
            )
            deployment.contract_id = contract_id
            if on_contract is not None:
                on_contract(contract_id)

            logger.info(f"Submitting deployment {contract_id} to node {node_id}")
            self._remote(
                "deploy",
                node_id,
                contract_id,
                lambda: self._agent.deploy(node_id, deployment, timeout=timeout),
            )
            self.wait(node_id, contract_id)
        except GridProvError:
            self.states[node_id] = NodeState.FAILED
            raise

        self.states[node_id] = NodeState.DEPLOYED
        return contract_id

    def update(
        self,
        node_id: int,
        contract_id: int,
        deployment: Deployment,
        *,
        timeout: float,
        resubmit: bool = False,
    ) -> int:
        """Point an existing contract at a new deployment version and apply it.

        Args:
            node_id: Target node
            contract_id: Contract recorded for the node
            deployment: Validated and signed deployment, already versioned
            timeout: Budget for each submission call, in seconds
            resubmit: Submit as a new deployment; used when the contract exists
                but its first submission was never confirmed

        Returns:
            The contract id returned by the ledger.
        """
        if contract_id <= 0:
            raise ValidationError(
                field="contract_id",
                message=f"node {node_id} has no contract to update",
                expected="a positive contract id",
                actual=str(contract_id),
            )
        self._check_submittable(deployment)
        self._transition(node_id, NodeState.UPDATING)
        try:
            self._resolve(node_id)
            deployment_hash = deployment.challenge_hash()
            logger.info(
                f"Updating contract {contract_id} on node {node_id} "
                f"to version {deployment.version}"
            )
            new_contract_id = self._remote(
                "update",
                node_id,
                contract_id,
                lambda: self._ledger.update_contract(
                    self._identity.twin_id, contract_id, deployment_hash
                ),
            )
            deployment.contract_id = new_contract_id

            if resubmit:
                logger.info(f"Resubmitting deployment {new_contract_id} to node {node_id}")
                submit = self._agent.deploy
            else:
                submit = self._agent.update
            self._remote(
                "update",
                node_id,
                new_contract_id,
                lambda: submit(node_id, deployment, timeout=timeout),
            )
            self.wait(node_id, new_contract_id)
        except GridProvError:
            self.states[node_id] = NodeState.FAILED
            raise

        self.states[node_id] = NodeState.DEPLOYED
        return new_contract_id

    def cancel(self, node_id: int, contract_id: int, *, timeout: float) -> None:
        """Cancel a node's contract, then delete the remote deployment.

        The contract cancellation is authoritative; a failure to delete the
        remote deployment afterwards is only logged.
        """
        self._transition(node_id, NodeState.CANCELLING)
        logger.info(f"Cancelling contract {contract_id} on node {node_id}")
        try:
            self._remote(
                "cancel",
                node_id,
                contract_id,
                lambda: self._ledger.cancel_contract(self._identity.twin_id, contract_id),
            )
        except GridProvError:
            self.states[node_id] = NodeState.FAILED
            raise

        try:
            self._agent.delete(node_id, contract_id, timeout=timeout)
        except Exception as exc:
            logger.warning(
                f"Contract {contract_id} cancelled but deleting the deployment "
                f"on node {node_id} failed: {exc}"
            )
        self.states[node_id] = NodeState.ABSENT

    def fetch(self, node_id: int, contract_id: int) -> Deployment:
        """Fetch the deployment currently held by a node agent."""
        return self._remote(
            "fetch",
            node_id,
            contract_id,
            lambda: self._agent.get(
                node_id, contract_id, timeout=self._settings.deployment_timeout
            ),
        )

    def wait(self, node_id: int, contract_id: int) -> Deployment:
        """Poll a deployment until every workload reached a terminal state.

        Fetches are spaced by the configured poll interval. A workload in any
        terminal state other than ``ok`` fails immediately.

        Raises:
            WorkloadFailedError: If a workload reports a failure
            DeploymentTimeoutError: If the polling budget runs out first
        """
        budget = self._settings.poll_timeout
        deadline = self._clock() + budget
        while True:
            deployment = self.fetch(node_id, contract_id)
            pending = False
            for index, workload in enumerate(deployment.workloads):
                state = workload.result.state
                if not state:
                    pending = True
                    continue
                if state != ResultState.OK.value:
                    raise WorkloadFailedError(
                        index=index,
                        contract_id=contract_id,
                        node_id=node_id,
                        error=workload.result.error or state,
                    )
            if not pending:
                logger.info(f"Deployment {contract_id} on node {node_id} is ready")
                return deployment

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise DeploymentTimeoutError(contract_id, node_id, budget)
            self._sleep(min(self._settings.poll_interval, remaining))

    def _check_submittable(self, deployment: Deployment) -> None:
        deployment.validate_structure()
        if not deployment.is_signed_by(self._identity.twin_id):
            raise ValidationError(
                field="deployment.signatures",
                message="deployment is not signed by the owning twin",
                expected=f"a signature from twin {self._identity.twin_id}",
                actual=str([s.twin_id for s in deployment.signatures]),
            )

    def _transition(self, node_id: int, target: NodeState) -> None:
        current = self.state_of(node_id)
        if target not in _ALLOWED[current]:
            raise ValidationError(
                field=f"node.{node_id}.state",
                message=f"cannot move node {node_id} from {current.value} to {target.value}",
                expected=", ".join(sorted(s.value for s in _ALLOWED[current])),
                actual=target.value,
            )
        self.states[node_id] = target

    def _resolve(self, node_id: int) -> int:
        node_twin = self._remote(
            "resolve", node_id, None, lambda: self._ledger.resolve_node(node_id)
        )
        logger.debug(f"Node {node_id} is served by twin {node_twin}")
        return node_twin

    @staticmethod
    def _remote(
        operation: str,
        node_id: int,
        contract_id: int | None,
        call: Callable[[], T],
    ) -> T:
        try:
            return call()
        except GridProvError:
            raise
        except Exception as exc:
            raise RemoteSubmitError(
                operation=operation,
                message=str(exc) or type(exc).__name__,
                node_id=node_id,
                contract_id=contract_id,
            ) from exc
