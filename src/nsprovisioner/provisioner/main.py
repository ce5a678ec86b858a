"""Command-line entrypoint for running the namespace provisioner."""

from __future__ import annotations

import sys
import threading

import structlog
import uvicorn
from pydantic import ValidationError

from ..common.observability import configure_logging
from ..common.settings import ProvisionerSettings
from .app import SERVICE_NAME, create_app, is_ready
from .internal import create_internal_app

LOGGER = structlog.get_logger("nsprovisioner.main")


def run(settings: ProvisionerSettings) -> int:
    configure_logging(SERVICE_NAME, settings.log_level)
    app = create_app(settings)
    internal_app = create_internal_app(settings, readiness=lambda: is_ready(app))

    # uvicorn only installs signal handlers on the main thread, which keeps
    # SIGINT/SIGTERM routed to the API server.
    internal_server = uvicorn.Server(
        uvicorn.Config(
            internal_app,
            host=settings.internal_host,
            port=settings.internal_port,
            lifespan="off",
            log_config=None,
            access_log=False,
        )
    )
    internal_thread = threading.Thread(target=internal_server.run, name="internal-server", daemon=True)
    internal_thread.start()

    api_server = uvicorn.Server(
        uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_config=None)
    )
    try:
        api_server.run()
    finally:
        internal_server.should_exit = True
        internal_thread.join(timeout=5.0)

    if not api_server.started:
        LOGGER.error("API server failed to start")
        return 1
    LOGGER.info("Namespace provisioner stopped")
    return 0


def main() -> None:
    try:
        settings = ProvisionerSettings()
    except ValidationError as exc:
        print(exc, file=sys.stderr)
        sys.exit(1)
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
