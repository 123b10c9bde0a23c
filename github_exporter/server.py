"""HTTP exposition endpoint for the metric registry.

``GET /metrics`` returns the registry in the Prometheus text format. Every
other method or path gets a plain-text 404. A request that fails while
rendering gets a 500 of its own; the listener and the scheduler keep
running.
"""

import logging

from aiohttp import web

from .metrics.registry import MetricRegistry

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"
DEFAULT_HOST = "0.0.0.0"  # nosec B104
DEFAULT_PORT = 3000


class ExpositionServer:
    """Serves the metric registry to Prometheus scrapers."""

    def __init__(
        self,
        registry: MetricRegistry,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
    ) -> None:
        """Initialize the exposition server.

        Args:
            registry: Registry to render on each scrape
            host: Interface to bind
            port: TCP port to listen on
        """
        self.registry = registry
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application with a single catch-all route."""
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.Response:
        """Route one request."""
        if request.method != "GET" or request.path != METRICS_PATH:
            logger.debug(f"No route for {request.method} {request.path}")
            return web.Response(status=404, text="Not Found")

        try:
            body = self.registry.render_all()
        except Exception:
            logger.exception("Failed to encode metrics")
            return web.Response(status=500, text="Failed to encode metrics")

        return web.Response(
            body=body, headers={"Content-Type": self.registry.content_type}
        )

    async def start(self) -> None:
        """Bind the listener and start serving."""
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Serving metrics on http://{self.host}:{self.port}{METRICS_PATH}")

    async def stop(self) -> None:
        """Stop serving and release the listener."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Metrics server stopped")
