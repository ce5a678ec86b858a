"""FastAPI application exposing the namespace provisioning API."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from opentelemetry import trace

from ..common.http_security import require_bearer_token
from ..common.metrics import ACTION_DURATION
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app, namespace_span
from ..common.schemas import DeletionResponse, ErrorResponse
from ..common.settings import ProvisionerSettings
from .cache import NamespaceCache
from .deletion import DeletionCoordinator
from .errors import DeletionError, InvalidNamespaceNameError, ProvisioningError
from .gateway import ClusterGateway, Deadline, build_api_client
from .roles import resolve_role_reference
from .scheduler import ExpiryScheduler
from .workflow import ProvisioningWorkflow

LOGGER = structlog.get_logger("nsprovisioner.api")
TRACER = trace.get_tracer("nsprovisioner.api")

SERVICE_NAME = "nsprovisioner"
CACHE_SYNC_TIMEOUT_SECONDS = 60.0
DEFAULT_SERVER = "https://kubernetes.default.svc"


class AppState:
    """Container for application-level shared resources."""

    def __init__(
        self,
        settings: ProvisionerSettings,
        gateway: ClusterGateway,
        cache: NamespaceCache,
        scheduler: ExpiryScheduler,
        deletion: DeletionCoordinator,
        workflow: ProvisioningWorkflow,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.cache = cache
        self.scheduler = scheduler
        self.deletion = deletion
        self.workflow = workflow


def _get_state(request: Request) -> AppState:
    state: AppState = request.app.state.container  # type: ignore[attr-defined]
    return state


def get_settings(state: AppState = Depends(_get_state)) -> ProvisionerSettings:
    return state.settings


def require_api_token(request: Request, settings: ProvisionerSettings = Depends(get_settings)) -> None:
    require_bearer_token(request, settings.api_token)


def is_ready(app: FastAPI) -> bool:
    container: Optional[AppState] = getattr(app.state, "container", None)
    return container is not None and container.cache.synced


def build_state(
    settings: ProvisionerSettings,
    gateway: ClusterGateway,
    cache: NamespaceCache,
    server: str,
) -> AppState:
    role = resolve_role_reference(settings)
    deletion = DeletionCoordinator(gateway, cache)
    scheduler = ExpiryScheduler(
        deletion.delete,
        delete_timeout_seconds=settings.expiry_delete_timeout_seconds,
    )
    workflow = ProvisioningWorkflow(
        gateway,
        scheduler,
        server=server,
        prefix=settings.prefix,
        labels=settings.labels,
        role=role,
        identity_name=settings.identity_name,
        ttl_seconds=settings.ttl_seconds,
        token_read_attempts=settings.token_read_attempts,
        token_read_interval_seconds=settings.token_read_interval_seconds,
    )
    return AppState(
        settings=settings,
        gateway=gateway,
        cache=cache,
        scheduler=scheduler,
        deletion=deletion,
        workflow=workflow,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: ProvisionerSettings = app.state.settings
    configure_logging(SERVICE_NAME, settings.log_level)
    configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    gateway = app.state.gateway_override
    cache = app.state.cache_override
    api_client = None
    owns_cache = False
    if gateway is None:
        api_client, host = build_api_client(settings)
        server = settings.master or host
        gateway = ClusterGateway(api_client)
        cache = NamespaceCache(
            api_client,
            settings.selector,
            watch_timeout_seconds=settings.cache_watch_timeout_seconds,
        )
        owns_cache = True
        await cache.start()
        LOGGER.info("Waiting for namespace cache to sync")
        if not await cache.wait_for_sync(CACHE_SYNC_TIMEOUT_SECONDS):
            await cache.stop()
            api_client.close()
            raise RuntimeError("failed to sync namespace cache")
    else:
        server = settings.master or DEFAULT_SERVER

    container = build_state(settings, gateway, cache, server)
    app.state.container = container
    LOGGER.info(
        "Namespace provisioner ready",
        prefix=settings.prefix,
        ttl_seconds=settings.ttl_seconds,
        auth_enabled=settings.api_token is not None,
    )

    try:
        yield
    finally:
        await container.scheduler.drain(timeout=settings.drain_timeout_seconds)
        if owns_cache:
            await cache.stop()
        if api_client is not None:
            api_client.close()


def create_app(
    settings: Optional[ProvisionerSettings] = None,
    *,
    gateway: Optional[ClusterGateway] = None,
    cache: Optional[NamespaceCache] = None,
) -> FastAPI:
    if (gateway is None) != (cache is None):
        raise ValueError("gateway and cache must be supplied together")

    app = FastAPI(title="namespace-provisioner", lifespan=lifespan)
    app.state.settings = settings or ProvisionerSettings()
    app.state.gateway_override = gateway
    app.state.cache_override = cache
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def record_request_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise

        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_token)])

    @router.post(
        "/namespace",
        status_code=status.HTTP_201_CREATED,
        response_class=Response,
        responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def create_namespace(state: AppState = Depends(_get_state)) -> Response:
        with ACTION_DURATION.labels(action="create").time():
            deadline = Deadline.after(state.settings.request_timeout_seconds)
            try:
                provisioned = await state.workflow.create(deadline=deadline)
            except ProvisioningError as exc:
                raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
        return Response(
            content=provisioned.kubeconfig,
            status_code=status.HTTP_201_CREATED,
            media_type="application/yaml",
            headers={
                "X-Namespace": provisioned.name,
                "X-Namespace-Expires-At": provisioned.expires_at.isoformat(),
            },
        )

    @router.delete("/namespace/", include_in_schema=False)
    async def delete_namespace_without_name() -> None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="a namespace name must be specified")

    @router.delete(
        "/namespace/{name}",
        response_model=DeletionResponse,
        responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def delete_namespace(name: str, state: AppState = Depends(_get_state)) -> DeletionResponse:
        with ACTION_DURATION.labels(action="delete").time():
            deadline = Deadline.after(state.settings.request_timeout_seconds)
            with namespace_span(TRACER, "provisioner.delete", name) as span:
                try:
                    outcome = await state.deletion.delete(name, deadline=deadline)
                except InvalidNamespaceNameError as exc:
                    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
                except DeletionError as exc:
                    LOGGER.error("Namespace deletion failed", namespace=name, error=str(exc))
                    raise HTTPException(
                        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
                    ) from exc
                span.set_attribute("provisioner.outcome", outcome.value)
        return DeletionResponse(namespace=name.strip(), status=outcome)

    app.include_router(router)
    return app
