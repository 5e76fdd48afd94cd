"""Relay status endpoints (listener, active connections, counters)."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from tsrelay.relay.server import RelayServer

from .auth import require_token

router = APIRouter(
    prefix="/status",
    tags=["status"],
    dependencies=[Depends(require_token)],
)


class ConnectionInfo(BaseModel):
    """A connection currently owned by a worker."""

    peer: str = Field(description="Dirección del agente Netdata")
    state: str = Field(description="accepted, reading, writing o closed")
    started_at: datetime
    batches: int = Field(description="Lotes procesados en esta conexión")
    records: int = Field(description="Registros consolidados persistidos")


class RelayStatus(BaseModel):
    listening: str
    mode: str = Field(description="default, dropconn o persistent")
    timeout_ms: int
    table: str
    active_connections: int
    counters: Dict[str, int]


def get_server(request: Request) -> RelayServer:
    server = getattr(request.app.state, "server", None)
    if server is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="El relay no está inicializado",
        )
    return server


@router.get("", response_model=RelayStatus)
def relay_status(server: RelayServer = Depends(get_server)) -> RelayStatus:
    """Return listener details and the accumulated counters."""

    config = server.config
    return RelayStatus(
        listening=server.listening,
        mode=config.mode,
        timeout_ms=config.timeout_ms,
        table=config.storage.table,
        active_connections=len(server.active_workers()),
        counters=server.metrics.snapshot(),
    )


@router.get("/connections", response_model=List[ConnectionInfo])
def relay_connections(server: RelayServer = Depends(get_server)) -> List[ConnectionInfo]:
    return [ConnectionInfo(**info) for info in server.active_workers()]
