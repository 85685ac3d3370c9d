"""HTTP front end for scrapes and runtime control using FastAPI."""
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel
import logging
import time

from metrics_bridge.bridge import BridgeApp

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class BridgeAPI:
    """FastAPI app serving the scrape endpoint plus status and control routes."""

    def __init__(self, bridge: BridgeApp):
        """
        Initialize the API.

        Args:
            bridge: The bridge whose registry is exposed
        """
        self.bridge = bridge
        self.app = FastAPI(title="Metrics Bridge")
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""
        metrics_path = self.bridge.config.exporter.metrics_path

        # Sync handler: runs in the threadpool, so a slow cycle never blocks
        # the event loop and a disconnected client does not cancel it.
        @self.app.get(metrics_path)
        def metrics():
            """Serve the merged exposition payload."""
            payload, content_type = self.bridge.scrape()
            return Response(content=payload, media_type=content_type)

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get the last cycle report and bridge state."""
            return self.bridge.status()

        @self.app.post("/control/collect")
        def collect():
            """Run a collection cycle now."""
            report = self.bridge.coordinator.collect()
            return report.to_dict()

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 9102):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
