"""Provisioner state tracking helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from gridprov.config.defaults import STATE_DIR, STATE_FILE, STATE_VERSION
from gridprov.lib.errors import DeploymentError
from gridprov.models.state import (
    DeploymentStateRecord,
    NetworkStateRecord,
    ProvisionerState,
)

_RecordT = TypeVar("_RecordT", DeploymentStateRecord, NetworkStateRecord)


def get_state_path(manifest_path: Path) -> Path:
    """Return the state file path for a manifest."""
    return manifest_path.parent / STATE_DIR / STATE_FILE


def load_state(state_path: Path) -> ProvisionerState:
    """Load provisioner state from disk."""
    if not state_path.exists():
        return ProvisionerState(version=STATE_VERSION)

    try:
        content = state_path.read_text(encoding="utf-8")
        if not content.strip():
            return ProvisionerState(version=STATE_VERSION)
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read provisioner state at {state_path}: {exc}",
        ) from exc

    try:
        state = ProvisionerState.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid provisioner state format in {state_path}: {exc}",
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def save_state(state_path: Path, state: ProvisionerState) -> None:
    """Persist provisioner state to disk."""
    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        state_path.write_text(payload, encoding="utf-8")
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to write provisioner state to {state_path}: {exc}",
        ) from exc


def get_deployment_record(state_path: Path, name: str) -> DeploymentStateRecord | None:
    """Return the recorded state of a VM deployment."""
    return load_state(state_path).deployments.get(name)


def get_network_record(state_path: Path, name: str) -> NetworkStateRecord | None:
    """Return the recorded state of a network."""
    return load_state(state_path).networks.get(name)


def update_deployment_record(
    state_path: Path, name: str, record: DeploymentStateRecord
) -> DeploymentStateRecord:
    """Update the record of a VM deployment and persist it."""
    state = load_state(state_path)
    updated = _stamp(record, state.deployments.get(name))
    state.deployments[name] = updated
    save_state(state_path, state)
    return updated


def update_network_record(
    state_path: Path, name: str, record: NetworkStateRecord
) -> NetworkStateRecord:
    """Update the record of a network and persist it."""
    state = load_state(state_path)
    updated = _stamp(record, state.networks.get(name))
    state.networks[name] = updated
    save_state(state_path, state)
    return updated


def remove_deployment_record(state_path: Path, name: str) -> None:
    """Drop a VM deployment record after it was destroyed."""
    state = load_state(state_path)
    if state.deployments.pop(name, None) is not None:
        save_state(state_path, state)


def remove_network_record(state_path: Path, name: str) -> None:
    """Drop a network record after it was destroyed."""
    state = load_state(state_path)
    if state.networks.pop(name, None) is not None:
        save_state(state_path, state)


def _stamp(record: _RecordT, existing: _RecordT | None) -> _RecordT:
    now = datetime.now(timezone.utc)
    created_at = record.created_at or (existing.created_at if existing else None) or now
    return record.model_copy(update={"created_at": created_at, "updated_at": now})
