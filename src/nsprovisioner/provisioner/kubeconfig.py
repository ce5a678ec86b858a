"""Render the client configuration handed back to callers."""

from __future__ import annotations

import base64

import yaml

from .gateway import TokenSecret


def build_kubeconfig(*, server: str, namespace: str, credentials: TokenSecret, name: str) -> dict:
    """Build a kubeconfig whose only context points at ``namespace``."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "clusters": [
            {
                "name": name,
                "cluster": {
                    "server": server,
                    "certificate-authority-data": base64.b64encode(credentials.ca_data).decode("ascii"),
                },
            }
        ],
        "users": [{"name": name, "user": {"token": credentials.token}}],
        "contexts": [
            {
                "name": name,
                "context": {"cluster": name, "user": name, "namespace": namespace},
            }
        ],
        "current-context": name,
    }


def render_kubeconfig(document: dict) -> str:
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
