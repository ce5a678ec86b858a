"""Namespace name generation."""

from __future__ import annotations

import uuid


def generate_namespace_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid1()}"
