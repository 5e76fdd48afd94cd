"""FastAPI application exposing the relay status."""

from __future__ import annotations

import logging
from threading import Thread
from typing import Optional

import uvicorn
from fastapi import FastAPI

from tsrelay import __version__
from tsrelay.config.schema import WebAPISettings
from tsrelay.relay.server import RelayServer

from .status import router as status_router

logger = logging.getLogger(__name__)


def create_app(server: Optional[RelayServer], settings: Optional[WebAPISettings] = None) -> FastAPI:
    app = FastAPI(title="netdata-tsrelay status API", version=__version__)
    app.state.server = server
    app.state.settings = settings or WebAPISettings()
    app.include_router(status_router)
    return app


class StatusAPIThread:
    """Run uvicorn in a background thread next to the accept loop."""

    def __init__(self, app: FastAPI, settings: WebAPISettings) -> None:
        config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = Thread(target=self._server.run, name="tsrelay-webapi", daemon=True)
        self.settings = settings

    def start(self) -> None:
        self._thread.start()
        logger.info("API de estado disponible en http://%s:%d/status", self.settings.host, self.settings.port)

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)


def start_status_api(server: RelayServer, settings: WebAPISettings) -> StatusAPIThread:
    api = StatusAPIThread(create_app(server, settings), settings)
    api.start()
    return api


__all__ = ["StatusAPIThread", "create_app", "start_status_api"]
