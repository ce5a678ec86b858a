from __future__ import annotations

from pathlib import Path

import pytest

from nsprovisioner.provisioner.roles import RoleConfigurationError, load_role_manifest, resolve_role_reference

ROLE_YAML = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: Role
metadata:
  name: tenant
rules:
  - apiGroups: [""]
    resources: ["pods", "configmaps"]
    verbs: ["get", "list", "create"]
"""


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "role.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def test_cluster_role_reference(settings):
    role = resolve_role_reference(settings)

    assert role.kind == "ClusterRole"
    assert role.name == "edit"
    assert role.manifest is None


def test_role_file_reference(settings, tmp_path):
    settings.cluster_role = None
    settings.role_path = _write(tmp_path, ROLE_YAML)

    role = resolve_role_reference(settings)

    assert role.kind == "Role"
    assert role.name == settings.identity_name
    assert role.manifest["rules"][0]["verbs"] == ["get", "list", "create"]


def test_both_role_sources_rejected(settings, tmp_path):
    settings.role_path = _write(tmp_path, ROLE_YAML)
    with pytest.raises(RoleConfigurationError):
        resolve_role_reference(settings)


def test_no_role_source_rejected(settings):
    settings.cluster_role = None
    with pytest.raises(RoleConfigurationError):
        resolve_role_reference(settings)


@pytest.mark.parametrize(
    "content",
    [
        "kind: ClusterRole\nrules: []\n",
        "kind: Role\n",
        ROLE_YAML + "---\n" + ROLE_YAML,
        "kind: Role\nrules: [unterminated\n",
        "",
    ],
)
def test_invalid_role_files(tmp_path, content):
    with pytest.raises(RoleConfigurationError):
        load_role_manifest(_write(tmp_path, content))


def test_missing_role_file(tmp_path):
    with pytest.raises(RoleConfigurationError):
        load_role_manifest(tmp_path / "absent.yaml")
