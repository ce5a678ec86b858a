"""Exception hierarchy for the provisioning core."""

from __future__ import annotations

from typing import Optional


class GatewayError(Exception):
    """A cluster API call failed."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(GatewayError):
    pass


class ConflictError(GatewayError):
    pass


class DeadlineExceededError(GatewayError):
    pass


class TokenNotReadyError(GatewayError):
    """The token secret exists but the token controller has not filled it yet."""


class ProvisioningError(Exception):
    """A step of the provisioning sequence failed; later steps did not run."""

    def __init__(self, step: str, message: str, *, namespace: Optional[str] = None) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step
        self.namespace = namespace


class InvalidNamespaceNameError(ValueError):
    pass


class DeletionError(Exception):
    def __init__(self, namespace: str, message: str) -> None:
        super().__init__(f"failed to delete namespace {namespace}: {message}")
        self.namespace = namespace
