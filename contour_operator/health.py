"""
Liveness and readiness probes, and the thread that serves the operator's HTTP
apps (probes and admission webhook) with uvicorn
"""

# Standard
from typing import Callable, Optional
import threading

# Third Party
from fastapi import FastAPI
from fastapi.responses import JSONResponse
import uvicorn

# First Party
import alog

log = alog.use_channel("HLTH")


def create_health_app(
    is_healthy: Callable[[], bool], is_ready: Callable[[], bool]
) -> FastAPI:
    """Build the probe application

    Args:
        is_healthy:  Callable[[], bool]
            Liveness check. /healthz returns 503 when it is False.
        is_ready:  Callable[[], bool]
            Readiness check. /readyz returns 503 when it is False.

    Returns:
        app:  FastAPI
            The probe application
    """
    app = FastAPI(title="Contour Operator Probes")

    @app.get("/healthz")
    def healthz():
        if is_healthy():
            return {"status": "ok"}
        return JSONResponse({"status": "unhealthy"}, status_code=503)

    @app.get("/readyz")
    def readyz():
        if is_ready():
            return {"status": "ready"}
        return JSONResponse({"status": "not ready"}, status_code=503)

    return app


class ServerThread(threading.Thread):
    """Runs a uvicorn server for an ASGI app on a daemon thread"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        app: FastAPI,
        address: str,
        port: int,
        name: str,
        ssl_certfile: Optional[str] = None,
        ssl_keyfile: Optional[str] = None,
    ):
        super().__init__(name=name, daemon=True)
        self.server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=address,
                port=port,
                log_level="warning",
                ssl_certfile=ssl_certfile,
                ssl_keyfile=ssl_keyfile,
            )
        )

    def run(self):
        log.info("Serving %s on %s:%d", self.name, self.server.config.host, self.server.config.port)
        self.server.run()

    def stop(self):
        self.server.should_exit = True
