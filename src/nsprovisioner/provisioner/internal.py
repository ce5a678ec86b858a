"""Internal listener serving metrics and health probes."""

from __future__ import annotations

from typing import Callable

from fastapi import FastAPI, HTTPException, Request, Response, status

from ..common.http_security import require_bearer_token
from ..common.metrics import render_latest
from ..common.settings import ProvisionerSettings


def create_internal_app(settings: ProvisionerSettings, readiness: Callable[[], bool]) -> FastAPI:
    app = FastAPI(title="namespace-provisioner-internal", docs_url=None, redoc_url=None, openapi_url=None)
    metrics_token = settings.metrics_token.get_secret_value() if settings.metrics_token else None

    @app.get("/metrics")
    async def metrics_endpoint(request: Request) -> Response:
        require_bearer_token(request, metrics_token)
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    @app.get("/healthz")
    async def health_check() -> dict:
        return {"status": "healthy"}

    @app.get("/readyz")
    async def readiness_check() -> dict:
        if not readiness():
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="namespace cache not synced")
        return {"status": "ready"}

    return app
