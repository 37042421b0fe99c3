"""
Development server for the output directory
"""

import asyncio
import contextlib
import logging
import time
from pathlib import Path
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from .config import BuildConfig

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class DevServerMiddleware(BaseHTTPMiddleware):
    """
    Permissive CORS for local development:

    - ``OPTIONS`` requests are answered directly with an empty 200
    - every response carries the CORS headers and its response time
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.time()
        logger.debug(f"Request started: {request.method} {request.url.path}")

        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        response.headers.update(CORS_HEADERS)
        response.headers["X-Response-Time"] = f"{(time.time() - start_time) * 1000:.2f}ms"

        logger.debug(
            f"Request completed: {request.method} {request.url.path} "
            f"Status: {response.status_code} "
            f"Time: {response.headers['X-Response-Time']}"
        )
        return response


def create_app(out_dir: Path) -> Starlette:
    """
    Build the ASGI application serving a build output directory

    Args:
        out_dir: Directory to serve; ``index.html`` answers directory requests

    Returns:
        Starlette application
    """

    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "app": "Kiln Dev Server",
            "root": str(out_dir),
        })

    app = Starlette(
        debug=True,
        routes=[
            Route("/_kiln/health", health_check),
            Mount("/", StaticFiles(directory=out_dir, html=True, check_dir=False), name="output"),
        ],
    )
    app.add_middleware(DevServerMiddleware)
    return app


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the build process"""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class DevServer:
    """Serves the output directory while the build process watches sources"""

    def __init__(self, config: BuildConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.app = create_app(config.out_dir)
        self.server: Optional[EmbeddedServer] = None
        self._task: Optional["asyncio.Task"] = None

    @property
    def url(self) -> str:
        return f"http://{self.config.server.host}:{self.config.server.port}"

    async def start(self) -> None:
        """Start serving in a background task"""
        if self._task is not None and not self._task.done():
            logger.warning("Dev server is already running")
            return

        uvicorn_config = uvicorn.Config(
            self.app,
            host=self.config.server.host,
            port=self.config.server.port,
            log_level="info" if self.verbose else "warning",
            access_log=self.verbose,
        )
        self.server = EmbeddedServer(uvicorn_config)
        self._task = asyncio.create_task(self.server.serve())
        logger.info(f"Server started at {self.url}")

    async def stop(self) -> None:
        """Ask uvicorn to exit and wait for it"""
        if self.server is None or self._task is None:
            return

        self.server.should_exit = True
        try:
            await self._task
        except Exception as e:
            logger.error(f"Server error: {e}")
        self.server = None
        self._task = None
        logger.info("Development server stopped")
