"""Idempotent namespace deletion shared by API requests and TTL expiry."""

from __future__ import annotations

from typing import Optional, Protocol

import structlog

from ..common.schemas import DeletionOutcome
from .errors import ConflictError, DeletionError, GatewayError, InvalidNamespaceNameError, NotFoundError
from .gateway import Deadline, NamespaceState

LOGGER = structlog.get_logger("nsprovisioner.deletion")


class NamespaceDeleter(Protocol):
    async def delete_namespace(self, name: str, *, deadline: Deadline) -> None: ...


class NamespaceView(Protocol):
    def get(self, name: str) -> Optional[NamespaceState]: ...


class DeletionCoordinator:
    """Delete a tenant namespace, treating "already gone" as success.

    Explicit requests and expiry timers may race on the same name. No lock is
    taken: a second caller either sees the namespace missing or terminating in
    the cache, or gets not-found/conflict from the API, and all of those map
    to success.
    """

    def __init__(self, gateway: NamespaceDeleter, cache: NamespaceView) -> None:
        self._gateway = gateway
        self._cache = cache

    async def delete(self, name: str, *, deadline: Deadline) -> DeletionOutcome:
        name = (name or "").strip()
        if not name:
            raise InvalidNamespaceNameError("a namespace name must be specified")
        LOGGER.debug("Delete requested", namespace=name)

        cached = self._cache.get(name)
        if cached is None:
            LOGGER.debug("Namespace not in cache, treating as deleted", namespace=name)
            return DeletionOutcome.ALREADY_ABSENT
        if cached.terminating:
            LOGGER.debug("Namespace already terminating", namespace=name)
            return DeletionOutcome.ALREADY_TERMINATING

        LOGGER.info("Deleting namespace", namespace=name)
        try:
            await self._gateway.delete_namespace(name, deadline=deadline)
        except NotFoundError:
            return DeletionOutcome.ALREADY_ABSENT
        except ConflictError:
            # The API server refuses a second delete while finalizers run.
            return DeletionOutcome.ALREADY_TERMINATING
        except GatewayError as exc:
            raise DeletionError(name, str(exc)) from exc
        return DeletionOutcome.DELETED
