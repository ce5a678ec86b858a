"""Async gateway over the Kubernetes API used by the provisioning core."""

from __future__ import annotations

import asyncio
import base64
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog
import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..common.settings import ProvisionerSettings
from .errors import ConflictError, DeadlineExceededError, GatewayError, NotFoundError, TokenNotReadyError

LOGGER = structlog.get_logger("nsprovisioner.gateway")

SERVICE_ACCOUNT_NAME_ANNOTATION = "kubernetes.io/service-account.name"
SERVICE_ACCOUNT_TOKEN_TYPE = "kubernetes.io/service-account-token"
RBAC_API_GROUP = "rbac.authorization.k8s.io"


@dataclass(frozen=True)
class Deadline:
    """Absolute point on the monotonic clock by which a call must finish."""

    expires_at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def after(cls, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(expires_at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        return self.expires_at - self.clock()

    def expired(self) -> bool:
        return self.remaining() <= 0


@dataclass(frozen=True)
class TokenSecret:
    """Decoded credential material of a service account token secret."""

    ca_data: bytes
    token: str


@dataclass(frozen=True)
class RoleReference:
    """Role bound to every tenant identity.

    ``manifest`` is set only for the per-namespace ``Role`` variant, in which
    case the role is created inside each tenant namespace.
    """

    kind: str
    name: str
    manifest: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class NamespaceState:
    name: str
    labels: dict[str, str]
    phase: Optional[str] = None
    terminating: bool = False


def translate_api_exception(exc: ApiException) -> GatewayError:
    message = exc.reason or str(exc)
    if exc.status == 404:
        return NotFoundError(message, status=404)
    if exc.status == 409:
        return ConflictError(message, status=409)
    return GatewayError(message, status=exc.status)


def decode_token_secret(secret: client.V1Secret) -> TokenSecret:
    data = secret.data or {}
    raw_token = data.get("token")
    raw_ca = data.get("ca.crt")
    if not raw_token or not raw_ca:
        raise TokenNotReadyError(f"secret {secret.metadata.name} has no token yet")
    return TokenSecret(ca_data=base64.b64decode(raw_ca), token=base64.b64decode(raw_token).decode("utf-8"))


def namespace_state(namespace: client.V1Namespace) -> NamespaceState:
    metadata = namespace.metadata
    phase = namespace.status.phase if namespace.status else None
    return NamespaceState(
        name=metadata.name,
        labels=dict(metadata.labels or {}),
        phase=phase,
        terminating=metadata.deletion_timestamp is not None or phase == "Terminating",
    )


class ClusterGateway:
    """Create/get/delete primitives for the resources owned by a tenant."""

    def __init__(self, api_client: client.ApiClient) -> None:
        self._core = client.CoreV1Api(api_client)
        self._rbac = client.RbacAuthorizationV1Api(api_client)

    async def _call(self, action: str, func: Callable[..., Any], *args: Any, deadline: Deadline, **kwargs: Any) -> Any:
        timeout = deadline.remaining()
        if timeout <= 0:
            raise DeadlineExceededError(f"{action}: deadline exceeded before call")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, _request_timeout=timeout, **kwargs),
                timeout=timeout,
            )
        except ApiException as exc:
            raise translate_api_exception(exc) from exc
        except asyncio.TimeoutError as exc:
            raise DeadlineExceededError(f"{action}: deadline exceeded") from exc
        except urllib3.exceptions.HTTPError as exc:
            # Connection refused, reset or TLS failures never reach the API server.
            raise GatewayError(f"{action}: {exc}") from exc

    async def create_namespace(self, name: str, labels: dict[str, str], *, deadline: Deadline) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=dict(labels)))
        await self._call("create_namespace", self._core.create_namespace, body, deadline=deadline)

    async def get_namespace(self, name: str, *, deadline: Deadline) -> NamespaceState:
        namespace = await self._call("get_namespace", self._core.read_namespace, name, deadline=deadline)
        return namespace_state(namespace)

    async def delete_namespace(self, name: str, *, deadline: Deadline) -> None:
        body = client.V1DeleteOptions(propagation_policy="Foreground")
        await self._call("delete_namespace", self._core.delete_namespace, name, body=body, deadline=deadline)

    async def create_service_account(
        self, namespace: str, name: str, labels: dict[str, str], *, deadline: Deadline
    ) -> None:
        body = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels))
        )
        await self._call(
            "create_service_account",
            self._core.create_namespaced_service_account,
            namespace,
            body,
            deadline=deadline,
        )

    async def create_token_secret(
        self, namespace: str, name: str, service_account: str, labels: dict[str, str], *, deadline: Deadline
    ) -> None:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(labels),
                annotations={SERVICE_ACCOUNT_NAME_ANNOTATION: service_account},
            ),
            type=SERVICE_ACCOUNT_TOKEN_TYPE,
        )
        await self._call("create_token_secret", self._core.create_namespaced_secret, namespace, body, deadline=deadline)

    async def read_token_secret(self, namespace: str, name: str, *, deadline: Deadline) -> TokenSecret:
        secret = await self._call(
            "read_token_secret", self._core.read_namespaced_secret, name, namespace, deadline=deadline
        )
        return decode_token_secret(secret)

    async def create_role(
        self, namespace: str, name: str, manifest: dict[str, Any], labels: dict[str, str], *, deadline: Deadline
    ) -> None:
        metadata = dict(manifest.get("metadata") or {})
        metadata.update({"name": name, "namespace": namespace, "labels": {**(metadata.get("labels") or {}), **labels}})
        body = {**manifest, "apiVersion": f"{RBAC_API_GROUP}/v1", "kind": "Role", "metadata": metadata}
        await self._call("create_role", self._rbac.create_namespaced_role, namespace, body, deadline=deadline)

    async def create_role_binding(
        self,
        namespace: str,
        name: str,
        role: RoleReference,
        service_account: str,
        labels: dict[str, str],
        *,
        deadline: Deadline,
    ) -> None:
        body = client.V1RoleBinding(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels)),
            role_ref=client.V1RoleRef(api_group=RBAC_API_GROUP, kind=role.kind, name=role.name),
            subjects=[client.RbacV1Subject(kind="ServiceAccount", name=service_account, namespace=namespace)],
        )
        await self._call(
            "create_role_binding", self._rbac.create_namespaced_role_binding, namespace, body, deadline=deadline
        )


def build_api_client(settings: ProvisionerSettings) -> tuple[client.ApiClient, str]:
    """Load cluster credentials and return the API client plus the server URL.

    An explicit kubeconfig wins; otherwise in-cluster configuration is tried
    before the default kubeconfig location. ``master`` overrides the server.
    """

    configuration = client.Configuration()
    if settings.kubeconfig:
        config.load_kube_config(config_file=str(settings.kubeconfig), client_configuration=configuration)
    else:
        try:
            config.load_incluster_config(client_configuration=configuration)
        except config.ConfigException:
            config.load_kube_config(client_configuration=configuration)
    if settings.master:
        configuration.host = settings.master.rstrip("/")
    LOGGER.info("Loaded cluster configuration", server=configuration.host)
    return client.ApiClient(configuration), configuration.host
