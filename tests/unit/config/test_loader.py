"""Unit tests for the manifest loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from gridprov.config.loader import ManifestLoader, substitute_env_vars
from gridprov.lib.errors import ConfigError
from gridprov.models.resources import Machine, ZdbMode

MANIFEST = """
twin_id: 7
deployments:
  - name: web
    node_id: 1
    network_name: net1
    ip_range: 10.1.3.0/24
    disks:
      - name: data
        size_gb: 10
    zdbs:
      - name: kv
        size_gb: 2
        password: ${ZDB_PASSWORD}
        mode: seq
    machines:
      - name: web1
        flist: https://hub.grid.tf/tf-official-apps/base:latest.flist
        cpu: 2
        memory_mb: 2048
        mounts:
          - disk_name: data
            mount_point: /data
        env_vars:
          - key: SSH_KEY
            value: ssh-ed25519 AAAA
networks:
  - name: net1
    ip_range: 10.1.0.0/16
    nodes: [1, 2]
    public_node_id: 1
"""


@pytest.fixture
def manifest_file(tmp_path: Path) -> Path:
    """A complete manifest on disk."""
    path = tmp_path / "grid.yaml"
    path.write_text(MANIFEST, encoding="utf-8")
    return path


@pytest.mark.unit
class TestSubstituteEnvVars:
    """Tests for ${VAR} substitution."""

    def test_substitutes_known_variables(self) -> None:
        """References are replaced by their values."""
        assert substitute_env_vars("pw: ${PW}", {"PW": "s3cret"}) == "pw: s3cret"

    def test_missing_variable(self) -> None:
        """Unset variables are configuration errors."""
        with pytest.raises(ConfigError, match="'PW' is referenced but not set"):
            substitute_env_vars("pw: ${PW}", {})


@pytest.mark.unit
class TestManifestLoader:
    """Tests for loading manifests."""

    def test_load_manifest(self, manifest_file: Path) -> None:
        """A valid manifest parses into models."""
        manifest = ManifestLoader(env={"ZDB_PASSWORD": "hunter2"}).load_manifest(
            manifest_file
        )

        assert manifest.twin_id == 7
        deployment = manifest.deployments[0]
        assert deployment.zdbs[0].password == "hunter2"
        assert deployment.zdbs[0].mode == ZdbMode.SEQ
        machine = deployment.machines[0]
        assert isinstance(machine, Machine)
        assert machine.mounts[0].disk_name == "data"
        assert manifest.networks[0].public_node_id == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing manifest is a configuration error."""
        with pytest.raises(ConfigError, match="Manifest not found"):
            ManifestLoader().load_manifest(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Unparseable YAML is a configuration error."""
        path = tmp_path / "grid.yaml"
        path.write_text("twin_id: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError, match="Failed to parse YAML"):
            ManifestLoader(env={}).load_manifest(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        """The top level must be a mapping."""
        path = tmp_path / "grid.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="must be a mapping"):
            ManifestLoader(env={}).load_manifest(path)

    def test_validation_errors_are_flattened(self, tmp_path: Path) -> None:
        """Field paths appear in the error message."""
        path = tmp_path / "grid.yaml"
        path.write_text(
            "twin_id: 7\nnetworks:\n  - name: n\n    ip_range: 10.1.3.0/24\n    nodes: [1]\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigError) as exc_info:
            ManifestLoader(env={}).load_manifest(path)

        assert "networks.0.ip_range" in exc_info.value.message
        assert "/16 or larger" in exc_info.value.message

    def test_duplicate_network_names(self, tmp_path: Path) -> None:
        """Network names are unique."""
        path = tmp_path / "grid.yaml"
        network = "  - name: n\n    ip_range: 10.1.0.0/16\n    nodes: [1]\n"
        path.write_text(f"twin_id: 7\nnetworks:\n{network}{network}", encoding="utf-8")

        with pytest.raises(ConfigError, match="Duplicate network names: n"):
            ManifestLoader(env={}).load_manifest(path)

    def test_public_node_must_participate(self, tmp_path: Path) -> None:
        """A public node outside the node list is rejected at load time."""
        path = tmp_path / "grid.yaml"
        path.write_text(
            "twin_id: 7\nnetworks:\n  - name: n\n    ip_range: 10.1.0.0/16\n"
            "    nodes: [1, 2]\n    public_node_id: 4\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigError, match="public node 4 is not one of the nodes"):
            ManifestLoader(env={}).load_manifest(path)
