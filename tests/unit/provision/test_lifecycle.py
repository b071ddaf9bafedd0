"""Unit tests for the deployment lifecycle controller."""

from __future__ import annotations

import logging

import pytest

from gridprov.config.settings import ProvisionerSettings
from gridprov.lib.errors import (
    DeploymentTimeoutError,
    RemoteSubmitError,
    ValidationError,
    WorkloadFailedError,
)
from gridprov.models.resources import Disk
from gridprov.models.workload import Deployment, SignatureRequirement
from gridprov.provision.lifecycle import DeploymentController, NodeState
from gridprov.provision.workloads import build_disk_workload


def _deployment(identity, version: int = 0, sign: bool = True) -> Deployment:
    deployment = Deployment(
        version=version,
        twin_id=identity.twin_id,
        workloads=[build_disk_workload(Disk(name="data", size_gb=1), version)],
        signature_requirement=SignatureRequirement.single(identity.twin_id),
    )
    if sign:
        deployment.sign(identity.twin_id, identity)
    return deployment


class TestCreate:
    """Tests for contract creation and first submission."""

    def test_create_registers_hash_and_deploys(self, controller, ledger, agent, identity) -> None:
        """The ledger sees the challenge hash; the agent gets the deployment."""
        deployment = _deployment(identity)

        contract_id = controller.create(1, deployment, timeout=30)

        assert contract_id == 101
        assert deployment.contract_id == 101
        assert ledger.calls[0] == ("resolve", 1)
        assert ledger.calls[1] == ("create", 7, 1, deployment.challenge_hash())
        assert agent.operations() == ["deploy"]
        assert controller.states[1] == NodeState.DEPLOYED

    def test_contract_reported_before_submission(self, controller, agent, identity) -> None:
        """The contract callback runs before the node agent is contacted."""
        seen: list[tuple[int, list[str]]] = []

        controller.create(
            1,
            _deployment(identity),
            timeout=30,
            on_contract=lambda cid: seen.append((cid, agent.operations())),
        )

        assert seen == [(101, [])]

    def test_unsigned_deployment_is_rejected(self, controller, ledger, identity) -> None:
        """Nothing is sent for an unsigned deployment."""
        with pytest.raises(ValidationError, match="not signed"):
            controller.create(1, _deployment(identity, sign=False), timeout=30)

        assert ledger.calls == []

    def test_ledger_failure_is_wrapped(self, controller, ledger, agent, identity) -> None:
        """Collaborator exceptions surface as RemoteSubmitError."""
        ledger.fail["create"] = RuntimeError("ledger unavailable")

        with pytest.raises(RemoteSubmitError, match="ledger unavailable") as exc_info:
            controller.create(1, _deployment(identity), timeout=30)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.operation == "create"
        assert agent.operations() == []
        assert controller.states[1] == NodeState.FAILED

    def test_agent_failure_carries_contract(self, controller, agent, identity) -> None:
        """A failed submission reports node and contract."""
        agent.fail_nodes.add(1)

        with pytest.raises(RemoteSubmitError) as exc_info:
            controller.create(1, _deployment(identity), timeout=30)

        assert exc_info.value.node_id == 1
        assert exc_info.value.contract_id == 101
        assert "(node 1, contract 101)" in str(exc_info.value)

    def test_second_create_is_refused(self, controller, identity) -> None:
        """A deployed node cannot be created again."""
        controller.create(1, _deployment(identity), timeout=30)

        with pytest.raises(ValidationError, match="from deployed to creating"):
            controller.create(1, _deployment(identity), timeout=30)


class TestWait:
    """Tests for bounded polling."""

    def test_pending_results_are_polled(self, controller, agent, clock, identity) -> None:
        """Fetches are spaced by the fixed poll interval."""
        agent.pending_polls = 2

        controller.create(1, _deployment(identity), timeout=30)

        assert [c[0] for c in agent.calls].count("get") == 3
        assert clock.sleeps == [1, 1]

    def test_error_state_fails_immediately(self, controller, agent, clock, identity) -> None:
        """A failed workload aborts without waiting for the budget."""
        agent.states[1] = "error"
        agent.errors[1] = "disk quota exceeded"

        with pytest.raises(WorkloadFailedError) as exc_info:
            controller.create(1, _deployment(identity), timeout=30)

        assert exc_info.value.index == 0
        assert exc_info.value.contract_id == 101
        assert "disk quota exceeded" in str(exc_info.value)
        assert clock.sleeps == []
        assert controller.states[1] == NodeState.FAILED

    def test_deleted_state_is_a_failure(self, controller, agent, identity) -> None:
        """Only ``ok`` counts as success."""
        agent.states[1] = "deleted"

        with pytest.raises(WorkloadFailedError, match="deleted"):
            controller.create(1, _deployment(identity), timeout=30)

    def test_budget_exhaustion(self, controller, agent, clock, identity) -> None:
        """Polling stops once the budget is spent."""
        agent.pending_polls = 1000

        with pytest.raises(DeploymentTimeoutError, match="timed out after 5s"):
            controller.create(1, _deployment(identity), timeout=30)

        assert clock.now == 5
        assert sum(clock.sleeps) == 5

    def test_last_sleep_is_clamped(self, ledger, agent, identity, clock) -> None:
        """The final delay never overshoots the budget."""
        settings = ProvisionerSettings(poll_timeout=2.5, poll_interval=1)
        controller = DeploymentController(
            ledger, agent, identity, settings, clock=clock, sleep=clock.sleep
        )
        agent.pending_polls = 1000

        with pytest.raises(DeploymentTimeoutError):
            controller.create(1, _deployment(identity), timeout=30)

        assert clock.sleeps == [1, 1, 0.5]


class TestUpdate:
    """Tests for contract updates."""

    def test_update_uses_existing_contract(self, controller, ledger, agent, identity) -> None:
        """The contract is updated before the agent sees the new version."""
        contract_id = controller.create(1, _deployment(identity), timeout=30)
        updated = _deployment(identity, version=1)

        result = controller.update(1, contract_id, updated, timeout=30)

        assert result == contract_id
        assert ledger.operations() == ["create", "update"]
        assert ledger.hashes[contract_id] == updated.challenge_hash()
        assert agent.operations() == ["deploy", "update"]
        assert controller.states[1] == NodeState.DEPLOYED

    def test_update_without_contract(self, controller, identity) -> None:
        """Updates need a positive contract id."""
        controller.restore(1, NodeState.DEPLOYED)

        with pytest.raises(ValidationError, match="no contract to update"):
            controller.update(1, -1, _deployment(identity), timeout=30)

    def test_update_of_absent_node(self, controller, identity) -> None:
        """An absent node cannot be updated."""
        with pytest.raises(ValidationError, match="from absent to updating"):
            controller.update(1, 5, _deployment(identity), timeout=30)

    def test_resubmit_deploys(self, controller, ledger, agent, identity) -> None:
        """An unconfirmed contract is resubmitted as a new deployment."""
        controller.restore(1, NodeState.FAILED)

        controller.update(1, 42, _deployment(identity, version=1), timeout=30, resubmit=True)

        assert ledger.operations() == ["update"]
        assert agent.operations() == ["deploy"]


class TestCancel:
    """Tests for contract cancellation."""

    def test_cancel_then_delete(self, controller, ledger, agent, identity) -> None:
        """Cancellation precedes the remote delete."""
        contract_id = controller.create(1, _deployment(identity), timeout=30)

        controller.cancel(1, contract_id, timeout=30)

        assert ledger.cancelled == [contract_id]
        assert agent.operations() == ["deploy", "delete"]
        assert controller.states[1] == NodeState.ABSENT

    def test_delete_failure_is_logged(self, controller, agent, identity, caplog) -> None:
        """A failed remote delete after cancellation only warns."""
        contract_id = controller.create(1, _deployment(identity), timeout=30)
        agent.fail_delete = True

        with caplog.at_level(logging.WARNING, logger="gridprov"):
            controller.cancel(1, contract_id, timeout=30)

        assert "deleting the deployment on node 1 failed" in caplog.text
        assert controller.states[1] == NodeState.ABSENT

    def test_cancel_failure_raises(self, controller, ledger, agent, identity) -> None:
        """A failed cancellation is an error and skips the delete."""
        contract_id = controller.create(1, _deployment(identity), timeout=30)
        ledger.fail["cancel"] = RuntimeError("rejected")

        with pytest.raises(RemoteSubmitError, match="rejected"):
            controller.cancel(1, contract_id, timeout=30)

        assert agent.operations() == ["deploy"]
        assert controller.states[1] == NodeState.FAILED
