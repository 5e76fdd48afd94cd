"""Typed configuration models implemented with dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

DEFAULT_DBOPTS = (
    "host=localhost port=5432 dbname=netdata user=netdata application_name=netdata-tsrelay"
)
DEFAULT_TABLE = "netdata"
DEFAULT_LISTEN_ADDR = "0.0.0.0"
DEFAULT_LISTEN_PORT = 14866
DEFAULT_TIMEOUT_MS = 500


def _as_str(value: Any, field_name: str, *, optional: bool = False) -> Optional[str]:
    if value is None:
        if optional:
            return None
        raise ValueError(f"'{field_name}' es obligatorio")
    text = str(value).strip()
    if not text and not optional:
        raise ValueError(f"'{field_name}' no puede estar vacío")
    return text or None


def _as_int(value: Any, field_name: str) -> int:
    if value is None:
        raise ValueError(f"'{field_name}' es obligatorio")
    if isinstance(value, bool):
        raise ValueError(f"'{field_name}' debe ser un entero válido")
    try:
        result = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' debe ser un entero válido") from exc
    return result


def _as_float(value: Any, field_name: str) -> float:
    if value is None:
        raise ValueError(f"'{field_name}' es obligatorio")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' debe ser numérico") from exc
    return result


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on", "si", "sí"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def _blank(value: Any) -> bool:
    return value is None or value == ""


@dataclass(frozen=True)
class ListenSettings:
    address: str = DEFAULT_LISTEN_ADDR
    port: int = DEFAULT_LISTEN_PORT
    backlog: int = 128

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ListenSettings":
        if not data:
            return cls()
        address = _as_str(data.get("address", DEFAULT_LISTEN_ADDR), "listen.address") or DEFAULT_LISTEN_ADDR
        port_raw = data.get("port")
        port = DEFAULT_LISTEN_PORT if _blank(port_raw) else _as_int(port_raw, "listen.port")
        # 0 deja que el sistema operativo elija un puerto libre.
        if port < 0 or port > 65535:
            raise ValueError("listen.port debe estar entre 0 y 65535")
        backlog_raw = data.get("backlog")
        backlog = 128 if _blank(backlog_raw) else _as_int(backlog_raw, "listen.backlog")
        if backlog < 1:
            raise ValueError("listen.backlog debe ser >= 1")
        return cls(address=address, port=port, backlog=backlog)

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "port": self.port, "backlog": self.backlog}

    @property
    def display(self) -> str:
        host = "*" if self.address == "0.0.0.0" else self.address
        return f"{host}:{self.port}"


@dataclass(frozen=True)
class StorageSettings:
    dbopts: str = DEFAULT_DBOPTS
    table: str = DEFAULT_TABLE
    check_on_startup: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "StorageSettings":
        if not data:
            return cls()
        dbopts_raw = data.get("dbopts")
        dbopts = DEFAULT_DBOPTS if _blank(dbopts_raw) else _as_str(dbopts_raw, "storage.dbopts")
        table_raw = data.get("table", data.get("dbtable"))
        table = DEFAULT_TABLE if table_raw is None else _as_str(table_raw, "storage.table")
        if any(not part for part in table.split(".")) or table.count(".") > 1:
            raise ValueError("storage.table debe ser 'tabla' o 'esquema.tabla'")
        check = _as_bool(data.get("check_on_startup"), True)
        return cls(dbopts=dbopts, table=table, check_on_startup=check)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dbopts": self.dbopts,
            "table": self.table,
            "check_on_startup": self.check_on_startup,
        }


@dataclass(frozen=True)
class WebAPISettings:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 14867
    token: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "WebAPISettings":
        if not data:
            return cls()
        enabled = _as_bool(data.get("enabled"), False)
        host = _as_str(data.get("host", "127.0.0.1"), "webapi.host") or "127.0.0.1"
        port_raw = data.get("port")
        port = 14867 if _blank(port_raw) else _as_int(port_raw, "webapi.port")
        if port < 1 or port > 65535:
            raise ValueError("webapi.port debe estar entre 1 y 65535")
        token = _as_str(data.get("token"), "webapi.token", optional=True)
        return cls(enabled=enabled, host=host, port=port, token=token)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "host": self.host,
            "port": self.port,
            "token": self.token,
        }


@dataclass(frozen=True)
class RelayConfig:
    """Resolved relay configuration, shared read-only by every worker."""

    listen: ListenSettings = field(default_factory=ListenSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    dropconn: bool = False
    persistent: bool = False
    verbose: bool = True
    debug: bool = False
    metrics_log_interval_s: float = 60.0
    webapi: WebAPISettings = field(default_factory=WebAPISettings)

    def __post_init__(self) -> None:
        if self.dropconn and self.persistent:
            raise ValueError("dropconn y persistent son mutuamente excluyentes")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms debe ser > 0")
        if self.metrics_log_interval_s < 0:
            raise ValueError("metrics_log_interval_s debe ser >= 0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "RelayConfig":
        data = data or {}
        listen = ListenSettings.from_mapping(data.get("listen"))
        storage = StorageSettings.from_mapping(data.get("storage"))
        timeout_raw = data.get("timeout_ms")
        timeout_ms = DEFAULT_TIMEOUT_MS if _blank(timeout_raw) else _as_int(timeout_raw, "timeout_ms")
        interval_raw = data.get("metrics_log_interval_s")
        interval = 60.0 if _blank(interval_raw) else _as_float(interval_raw, "metrics_log_interval_s")
        return cls(
            listen=listen,
            storage=storage,
            timeout_ms=timeout_ms,
            dropconn=_as_bool(data.get("dropconn"), False),
            persistent=_as_bool(data.get("persistent"), False),
            verbose=_as_bool(data.get("verbose"), True),
            debug=_as_bool(data.get("debug"), False),
            metrics_log_interval_s=interval,
            webapi=WebAPISettings.from_mapping(data.get("webapi")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listen": self.listen.to_dict(),
            "storage": self.storage.to_dict(),
            "timeout_ms": self.timeout_ms,
            "dropconn": self.dropconn,
            "persistent": self.persistent,
            "verbose": self.verbose,
            "debug": self.debug,
            "metrics_log_interval_s": self.metrics_log_interval_s,
            "webapi": self.webapi.to_dict(),
        }

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def mode(self) -> str:
        if self.dropconn:
            return "dropconn"
        if self.persistent:
            return "persistent"
        return "default"
