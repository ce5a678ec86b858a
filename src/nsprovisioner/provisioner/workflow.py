"""Ordered creation of a tenant namespace and its credentials."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

import structlog
from opentelemetry import trace

from ..common.observability import namespace_span
from ..common.schemas import ProvisionedNamespace
from .errors import GatewayError, NotFoundError, ProvisioningError, TokenNotReadyError
from .gateway import ClusterGateway, Deadline, RoleReference, TokenSecret
from .kubeconfig import build_kubeconfig, render_kubeconfig
from .naming import generate_namespace_name
from .scheduler import ExpiryScheduler, SchedulerClosedError

LOGGER = structlog.get_logger("nsprovisioner.workflow")
TRACER = trace.get_tracer("nsprovisioner.workflow")


class ProvisioningWorkflow:
    """Create namespace, identity and binding, then hand back a kubeconfig.

    The sequence is strictly ordered and stops at the first failure. The
    namespace is registered for expiry as soon as it exists, so resources
    left behind by a later failure are still removed when the TTL elapses.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        scheduler: ExpiryScheduler,
        *,
        server: str,
        prefix: str,
        labels: dict[str, str],
        role: RoleReference,
        identity_name: str = "np",
        ttl_seconds: float = 3600,
        token_read_attempts: int = 5,
        token_read_interval_seconds: float = 0.5,
        name_factory: Callable[[str], str] = generate_namespace_name,
    ) -> None:
        self._gateway = gateway
        self._scheduler = scheduler
        self._server = server
        self._prefix = prefix
        self._labels = dict(labels)
        self._role = role
        self._identity_name = identity_name
        self._ttl_seconds = ttl_seconds
        self._token_read_attempts = max(1, token_read_attempts)
        self._token_read_interval_seconds = token_read_interval_seconds
        self._name_factory = name_factory

    async def create(self, *, deadline: Deadline) -> ProvisionedNamespace:
        namespace = self._name_factory(self._prefix)
        log = LOGGER.bind(namespace=namespace)
        identity = self._identity_name

        with namespace_span(TRACER, "provisioner.create", namespace):
            async with self._step("create_namespace", namespace):
                await self._gateway.create_namespace(namespace, self._labels, deadline=deadline)
            created_at = datetime.now(timezone.utc)
            log.info("Created namespace")

            try:
                expiry = self._scheduler.schedule(namespace, self._ttl_seconds)
            except SchedulerClosedError as exc:
                raise ProvisioningError("schedule_expiry", str(exc), namespace=namespace) from exc

            async with self._step("create_service_account", namespace):
                await self._gateway.create_service_account(namespace, identity, self._labels, deadline=deadline)
            async with self._step("create_token_secret", namespace):
                await self._gateway.create_token_secret(namespace, identity, identity, self._labels, deadline=deadline)
            if self._role.manifest is not None:
                async with self._step("create_role", namespace):
                    await self._gateway.create_role(
                        namespace, self._role.name, self._role.manifest, self._labels, deadline=deadline
                    )
            async with self._step("create_role_binding", namespace):
                await self._gateway.create_role_binding(
                    namespace, identity, self._role, identity, self._labels, deadline=deadline
                )
            async with self._step("read_token_secret", namespace):
                credentials = await self._read_token(namespace, deadline)

            document = build_kubeconfig(
                server=self._server,
                namespace=namespace,
                credentials=credentials,
                name=identity,
            )
            log.info("Provisioned namespace", expires_at=expiry.expires_at.isoformat())
            return ProvisionedNamespace(
                name=namespace,
                created_at=created_at,
                expires_at=expiry.expires_at,
                kubeconfig=render_kubeconfig(document),
            )

    async def _read_token(self, namespace: str, deadline: Deadline) -> TokenSecret:
        """Read the token secret, waiting briefly for the token controller."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._gateway.read_token_secret(namespace, self._identity_name, deadline=deadline)
            except (TokenNotReadyError, NotFoundError) as exc:
                if attempt >= self._token_read_attempts:
                    raise TokenNotReadyError(
                        f"no token for service account after {attempt} attempts"
                    ) from exc
                if deadline.remaining() <= self._token_read_interval_seconds:
                    raise
                LOGGER.debug("Token not populated yet", namespace=namespace, attempt=attempt)
                await asyncio.sleep(self._token_read_interval_seconds)

    @asynccontextmanager
    async def _step(self, step: str, namespace: str) -> AsyncIterator[None]:
        try:
            yield
        except GatewayError as exc:
            LOGGER.error("Provisioning step failed", namespace=namespace, step=step, error=str(exc))
            raise ProvisioningError(step, str(exc), namespace=namespace) from exc
