"""Pydantic schemas shared across provisioner components."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DeletionOutcome(str, Enum):
    """How a delete request was satisfied. Every member means success."""

    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    ALREADY_TERMINATING = "already_terminating"


class DeletionResponse(BaseModel):
    namespace: str
    status: DeletionOutcome


class ProvisionedNamespace(BaseModel):
    """Result of a successful provisioning request."""

    name: str
    created_at: datetime
    expires_at: datetime
    kubeconfig: str = Field(repr=False)


class ErrorResponse(BaseModel):
    detail: str
