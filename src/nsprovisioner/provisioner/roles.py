"""Resolve the role that tenant identities are bound to."""

from __future__ import annotations

from pathlib import Path

import yaml

from ..common.settings import ProvisionerSettings
from .gateway import RoleReference


class RoleConfigurationError(ValueError):
    pass


def load_role_manifest(path: Path) -> dict:
    try:
        documents = [doc for doc in yaml.safe_load_all(path.read_text(encoding="utf-8")) if doc]
    except (OSError, yaml.YAMLError) as exc:
        raise RoleConfigurationError(f"failed to read Role {str(path)!r}: {exc}") from exc
    if len(documents) != 1:
        raise RoleConfigurationError(f"expected exactly one document in {path}, found {len(documents)}")
    manifest = documents[0]
    if not isinstance(manifest, dict) or manifest.get("kind") != "Role":
        raise RoleConfigurationError(f"{path} does not contain a Role")
    if not isinstance(manifest.get("rules"), list):
        raise RoleConfigurationError(f"Role in {path} has no rules")
    return manifest


def resolve_role_reference(settings: ProvisionerSettings) -> RoleReference:
    if settings.role_path and settings.cluster_role:
        raise RoleConfigurationError("configure either a cluster role or a role file, not both")
    if settings.role_path:
        manifest = load_role_manifest(settings.role_path)
        # Each tenant namespace gets its own copy named after the identity.
        return RoleReference(kind="Role", name=settings.identity_name, manifest=manifest)
    if settings.cluster_role:
        return RoleReference(kind="ClusterRole", name=settings.cluster_role)
    raise RoleConfigurationError("a cluster role or a role file must be configured")
