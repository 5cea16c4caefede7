"""Health check endpoints for the ticker ingestor."""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from aiohttp import web

if TYPE_CHECKING:
    from .pipeline import IngestPipeline


logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, pipeline: "IngestPipeline"):
        self.pipeline = pipeline

    async def health(self, request: web.Request) -> web.Response:
        """Full health report; 503 unless healthy."""
        try:
            health_data = self.pipeline.health_check()
            status = 200 if health_data["status"] == "healthy" else 503
            return web.json_response(health_data, status=status)

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "service": self.pipeline.settings.service_name,
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": _now()
                },
                status=503
            )

    async def ready(self, request: web.Request) -> web.Response:
        """Readiness probe: ready while healthy or degraded."""
        try:
            health_data = self.pipeline.health_check()
            is_ready = health_data["status"] in ["healthy", "degraded"]
            return web.json_response(
                {"ready": is_ready, "status": health_data["status"], "timestamp": _now()},
                status=200 if is_ready else 503
            )

        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            return web.json_response(
                {"ready": False, "error": str(e), "timestamp": _now()},
                status=503
            )

    async def live(self, request: web.Request) -> web.Response:
        """Liveness probe."""
        return web.json_response({"alive": True, "timestamp": _now()}, status=200)


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, pipeline: "IngestPipeline", host: str = "0.0.0.0", port: int = 8080):
        self.pipeline = pipeline
        self.host = host
        self.port = port
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        handler = HealthCheckHandler(self.pipeline)
        app.router.add_get('/health', handler.health)
        app.router.add_get('/ready', handler.ready)
        app.router.add_get('/live', handler.live)
        return app

    async def start(self):
        """Start the health check server."""
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.app = self.build_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")