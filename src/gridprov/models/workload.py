"""Workload and deployment models submitted to node agents.

A workload is the immutable, versioned unit describing one realized resource;
a deployment bundles the workloads placed on one node under one contract and
must be validated and signed by its owning twin before submission.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from gridprov.lib.errors import ValidationError


class WorkloadType(str, Enum):
    """Workload kinds understood by node agents."""

    ZMOUNT = "zmount"
    ZDB = "zdb"
    ZMACHINE = "zmachine"
    NETWORK = "network"


class ResultState(str, Enum):
    """Terminal states a node agent reports for a workload."""

    OK = "ok"
    ERROR = "error"
    DELETED = "deleted"


class ZMountData(BaseModel):
    """Payload of a disk workload."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    size_bytes: int


class ZdbData(BaseModel):
    """Payload of a storage node workload; ``password`` is ciphertext."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    size_bytes: int
    mode: str
    password: str


class MachineInterface(BaseModel):
    """Attachment of a machine to a private network."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    network: str
    ip: str


class MachineNetwork(BaseModel):
    """Network attachments of a machine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    interfaces: tuple[MachineInterface, ...] = ()
    planetary: bool = True


class MachineCapacity(BaseModel):
    """Compute capacity reserved for a machine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cpu: int
    memory_bytes: int


class MachineMount(BaseModel):
    """Disk mounted into a machine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    mountpoint: str


class MachineData(BaseModel):
    """Payload of a virtual machine workload."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    flist: str
    network: MachineNetwork
    capacity: MachineCapacity
    entrypoint: str = ""
    mounts: tuple[MachineMount, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)


class Peer(BaseModel):
    """One remote end of a node's overlay interface."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    subnet: str
    wg_public_key: str
    allowed_ips: tuple[str, ...]
    endpoint: str = ""


class NetworkData(BaseModel):
    """Payload of a private network workload on one node."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    ip_range: str
    subnet: str
    wg_private_key: str
    wg_listen_port: int
    peers: tuple[Peer, ...] = ()


WorkloadData = ZMountData | ZdbData | MachineData | NetworkData


class WorkloadResult(BaseModel):
    """Result reported by the node agent; an empty state means pending."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    state: str = ""
    error: str = ""


class Workload(BaseModel):
    """Versioned unit submitted to a node agent."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: WorkloadType
    name: str
    version: int = Field(default=0, ge=0)
    description: str = ""
    data: WorkloadData
    result: WorkloadResult = Field(default_factory=WorkloadResult)


class SignatureRequest(BaseModel):
    """A twin whose signature counts towards the requirement."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    twin_id: int
    weight: int = 1
    required: bool = False


class SignatureRequirement(BaseModel):
    """Signers and the total weight needed to accept a deployment."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    weight_required: int = 1
    requests: tuple[SignatureRequest, ...] = ()

    @classmethod
    def single(cls, twin_id: int) -> SignatureRequirement:
        """Requirement satisfied by one signature from ``twin_id``."""
        return cls(weight_required=1, requests=(SignatureRequest(twin_id=twin_id),))


class Signature(BaseModel):
    """Signature of a deployment challenge by one twin."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    twin_id: int
    signature: str
    signature_type: str = "ed25519"


class Signer(Protocol):
    """Anything able to sign raw bytes."""

    def sign(self, data: bytes) -> bytes: ...


class Deployment(BaseModel):
    """Signed bundle of workloads for one node under one contract.

    ``contract_id`` is zero until the ledger accepts the contract.
    """

    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=0, ge=0)
    twin_id: int
    contract_id: int = 0
    description: str = ""
    workloads: list[Workload] = Field(default_factory=list)
    signature_requirement: SignatureRequirement
    signatures: list[Signature] = Field(default_factory=list)

    def validate_structure(self) -> None:
        """Check the deployment is internally consistent.

        Raises:
            ValidationError: If the deployment is empty, has duplicate or
                over-versioned workloads, or an unsatisfiable signature
                requirement
        """
        if not self.workloads:
            raise ValidationError(
                field="deployment.workloads",
                message="deployment has no workloads",
                expected="at least one workload",
                actual="0 workloads",
            )

        seen: set[str] = set()
        for workload in self.workloads:
            if not workload.name:
                raise ValidationError(
                    field="deployment.workloads.name",
                    message="workload name is empty",
                    expected="a non-empty name",
                    actual=repr(workload.name),
                )
            if workload.name in seen:
                raise ValidationError(
                    field="deployment.workloads.name",
                    message=f"duplicate workload name '{workload.name}'",
                    expected="unique workload names",
                    actual=workload.name,
                )
            seen.add(workload.name)
            if workload.version > self.version:
                raise ValidationError(
                    field=f"deployment.workloads.{workload.name}.version",
                    message="workload version is ahead of the deployment version",
                    expected=f"<= {self.version}",
                    actual=str(workload.version),
                )

        requirement = self.signature_requirement
        total_weight = sum(r.weight for r in requirement.requests)
        if requirement.weight_required <= 0 or total_weight < requirement.weight_required:
            raise ValidationError(
                field="deployment.signature_requirement",
                message="signature requirement cannot be satisfied",
                expected=f"request weights >= {requirement.weight_required} (> 0)",
                actual=str(total_weight),
            )

    def challenge(self) -> bytes:
        """Return the canonical bytes covered by signatures.

        Signatures, the contract id and workload results are excluded so the
        challenge is stable across submission.
        """
        payload = self.model_dump(
            mode="json",
            exclude={
                "signatures": True,
                "contract_id": True,
                "workloads": {"__all__": {"result"}},
            },
        )
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode(
            "utf-8"
        )

    def challenge_hash(self) -> str:
        """Return the hex sha256 digest registered with the ledger contract."""
        return hashlib.sha256(self.challenge()).hexdigest()

    def sign(self, twin_id: int, signer: Signer) -> None:
        """Sign the deployment challenge on behalf of ``twin_id``.

        Raises:
            ValidationError: If the twin is not a requested signer
        """
        if not any(r.twin_id == twin_id for r in self.signature_requirement.requests):
            raise ValidationError(
                field="deployment.signature_requirement",
                message=f"twin {twin_id} is not a requested signer",
                expected="a twin listed in the signature requirement",
                actual=str(twin_id),
            )
        digest = hashlib.sha256(self.challenge()).digest()
        signature = signer.sign(digest).hex()
        self.signatures = [s for s in self.signatures if s.twin_id != twin_id]
        self.signatures.append(Signature(twin_id=twin_id, signature=signature))

    def is_signed_by(self, twin_id: int) -> bool:
        """Return True when ``twin_id`` has signed this deployment."""
        return any(s.twin_id == twin_id for s in self.signatures)
