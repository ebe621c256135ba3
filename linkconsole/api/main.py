"""FastAPI application for the link console API.

Provides the application factory and the module-level ``app`` used by
``linkconsole serve``. The lifespan builds the ConsoleRuntime, loads the
connection list and starts the reconciliation scheduler; shutdown
cancels every timer and poll.
"""

import logging
import sys
import time as _time
from collections.abc import Callable
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("linkconsole").setLevel(logging.INFO)

from linkconsole import __version__  # noqa: E402
from linkconsole.api.routes import connections, notifications, owners  # noqa: E402
from linkconsole.cli.config import load_config  # noqa: E402
from linkconsole.db.connection import SessionLocal, init_db  # noqa: E402
from linkconsole.services.runtime import ConsoleRuntime  # noqa: E402

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[], ConsoleRuntime]


def default_runtime() -> ConsoleRuntime:
    """Build the runtime from the resolved config and the default database."""
    init_db()
    return ConsoleRuntime(load_config(), SessionLocal)


def _package_version() -> str:
    try:
        return _pkg_version("whatsapp-link-console")
    except PackageNotFoundError:
        return __version__


def create_app(
    runtime_factory: RuntimeFactory = default_runtime,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        runtime_factory: Called once at startup to build the runtime.
        run_scheduler: Start the periodic reconciliation timer.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = _time.time()
        runtime = runtime_factory()
        app.state.runtime = runtime
        try:
            await runtime.start(run_scheduler=run_scheduler)
        except Exception as e:
            logger.error("Console runtime start failed (non-blocking): %s", e)
        yield
        await runtime.shutdown()

    app = FastAPI(
        title="WhatsApp Link Console API",
        description="Create, link, monitor and remove WhatsApp link instances",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(connections.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(owners.router, prefix="/api/v1")

    @app.get("/health")
    def health_check(request: Request) -> dict:
        """Health check with connection and scheduler status."""
        runtime: ConsoleRuntime = request.app.state.runtime
        started_at = getattr(request.app.state, "started_at", None)
        return {
            "status": "healthy",
            "version": _package_version(),
            "uptime_seconds": int(_time.time() - started_at) if started_at else 0,
            "connections": len(runtime.registry),
            "checker": runtime.scheduler.status(),
        }

    return app


app = create_app()
