"""Diff engine comparing declared resources against recorded state.

Each declared resource is matched against the recorded list by its identity
key. The result tells the caller whether the resource changed and which
recorded resource it was matched with, from which the next workload version
follows: 0 for a new resource, the recorded version when unchanged, and the
recorded version plus one when changed.

Removals are not reported by ``diff_resource``; callers compute them with
``removed_names`` as a set difference.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from gridprov.models.resources import Disk, Machine, StorageNode, identity_key

ResourceT = TypeVar("ResourceT", Disk, StorageNode, Machine)


@dataclass(frozen=True)
class DiffResult(Generic[ResourceT]):
    """Outcome of comparing one declared resource.

    Attributes:
        changed: True when a tracked field differs from the recorded resource
        prior: The matched recorded resource, or None for a new resource
    """

    changed: bool
    prior: ResourceT | None

    @property
    def is_new(self) -> bool:
        return self.prior is None


class ChangeAction(str, Enum):
    """Planned action for one resource."""

    ADD = "add"
    CHANGE = "change"
    UNCHANGED = "unchanged"
    REMOVE = "remove"


@dataclass(frozen=True)
class ResourceChange:
    """One line of a reconciliation plan."""

    kind: str
    name: str
    action: ChangeAction
    version: int | None


def _disk_changed(declared: Disk, prior: Disk) -> bool:
    return declared.size_gb != prior.size_gb or declared.description != prior.description


def _zdb_changed(declared: StorageNode, prior: StorageNode) -> bool:
    return (
        declared.size_gb != prior.size_gb
        or declared.mode != prior.mode
        or declared.description != prior.description
        or declared.password != prior.password
    )


def _machine_changed(declared: Machine, prior: Machine) -> bool:
    # An undeclared IP keeps whatever the allocator assigned before
    ip_changed = declared.ip is not None and declared.ip != prior.ip
    return (
        declared.cpu != prior.cpu
        or declared.memory_mb != prior.memory_mb
        or declared.entrypoint != prior.entrypoint
        or declared.mount_set() != prior.mount_set()
        or declared.env_mapping() != prior.env_mapping()
        or ip_changed
    )


def has_changed(declared: ResourceT, prior: ResourceT) -> bool:
    """Compare the tracked fields of two resources of the same kind."""
    if isinstance(declared, Disk) and isinstance(prior, Disk):
        return _disk_changed(declared, prior)
    if isinstance(declared, StorageNode) and isinstance(prior, StorageNode):
        return _zdb_changed(declared, prior)
    if isinstance(declared, Machine) and isinstance(prior, Machine):
        return _machine_changed(declared, prior)
    raise TypeError(
        f"Cannot compare {type(declared).__name__} with {type(prior).__name__}"
    )


def diff_resource(
    declared: ResourceT, prior_list: Sequence[ResourceT]
) -> DiffResult[ResourceT]:
    """Compare a declared resource against the recorded resources.

    Args:
        declared: The resource as declared in this run
        prior_list: Recorded resources of the same kind

    Returns:
        ``DiffResult(False, None)`` when nothing matches, otherwise the
        matched record and whether a tracked field changed.
    """
    key = identity_key(declared)
    for prior in prior_list:
        if identity_key(prior) == key:
            return DiffResult(changed=has_changed(declared, prior), prior=prior)
    return DiffResult(changed=False, prior=None)


def next_version(result: DiffResult[ResourceT]) -> int:
    """Return the version a resource is applied with.

    Raises:
        ValueError: If the matched record carries no version
    """
    if result.prior is None:
        return 0
    if result.prior.version is None:
        raise ValueError(f"Recorded resource '{result.prior.name}' has no version")
    return result.prior.version + 1 if result.changed else result.prior.version


def removed_names(
    declared: Sequence[ResourceT], prior_list: Sequence[ResourceT]
) -> set[str]:
    """Return names of recorded resources absent from the declared list.

    A machine re-declared under the same name with another image counts as a
    removal of the old machine.
    """
    declared_keys = {identity_key(r) for r in declared}
    return {p.name for p in prior_list if identity_key(p) not in declared_keys}


def plan_resources(
    declared: Sequence[ResourceT], prior_list: Sequence[ResourceT]
) -> list[ResourceChange]:
    """Produce plan lines for one resource kind, removals last."""
    changes: list[ResourceChange] = []
    for resource in declared:
        result = diff_resource(resource, prior_list)
        if result.is_new:
            action = ChangeAction.ADD
        elif result.changed:
            action = ChangeAction.CHANGE
        else:
            action = ChangeAction.UNCHANGED
        changes.append(
            ResourceChange(
                kind=resource.kind,
                name=resource.name,
                action=action,
                version=next_version(result),
            )
        )

    declared_keys = {identity_key(r) for r in declared}
    for prior in prior_list:
        if identity_key(prior) not in declared_keys:
            changes.append(
                ResourceChange(
                    kind=prior.kind,
                    name=prior.name,
                    action=ChangeAction.REMOVE,
                    version=prior.version,
                )
            )
    return changes
