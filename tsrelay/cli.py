"""Command line entry point for the Netdata to PostgreSQL relay."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence

from . import __version__
from .config import RelayConfig, default_relay_config, load_env_file, load_relay_config
from .config.store import relay_config_payload_from_env
from .logging_setup import setup_logging
from .relay import RelayStartupError, run_relay

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netdata_tsrelay",
        description="Relay the Netdata JSON backend stream into a PostgreSQL table.",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Quiet mode. Ignored if -d is supplied.")
    parser.add_argument("-d", "--debug", action="store_true", help="Show incoming and parsed data.")
    parser.add_argument("-v", "--version", action="store_true", help="Display version number.")
    parser.add_argument("-T", "--dbtable", help="Destination table name (default 'netdata').")
    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        help="Maximum time (in ms) an open socket waits for data before ending a sample (default 500).",
    )
    parser.add_argument("--dbopts", help="PostgreSQL connection string.")
    parser.add_argument("-a", "--listen-addr", help="Address to listen on (default 0.0.0.0).")
    parser.add_argument("-p", "--listen-port", type=int, help="Port to listen on (default 14866).")
    lifecycle = parser.add_mutually_exclusive_group()
    lifecycle.add_argument(
        "--dropconn",
        action="store_true",
        help="Close the client socket right after each sample; Netdata reconnects.",
    )
    lifecycle.add_argument(
        "--persistent",
        action="store_true",
        help="Keep the client socket and the database connection open across samples.",
    )
    parser.add_argument("-c", "--config", type=Path, help="YAML configuration file.")
    parser.add_argument("--env-file", type=Path, help="dotenv file with TSRELAY_* variables.")
    parser.add_argument("--webapi", action="store_true", help="Start the HTTP status API.")
    parser.add_argument("--webapi-port", type=int, help="Port for the HTTP status API.")
    return parser


def _deep_merge(base: MutableMapping[str, Any], extra: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), MutableMapping):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _flag_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    listen: Dict[str, Any] = {}
    storage: Dict[str, Any] = {}
    webapi: Dict[str, Any] = {}
    if args.listen_addr is not None:
        listen["address"] = args.listen_addr
    if args.listen_port is not None:
        listen["port"] = args.listen_port
    if args.dbopts is not None:
        storage["dbopts"] = args.dbopts
    if args.dbtable is not None:
        storage["table"] = args.dbtable
    if args.webapi:
        webapi["enabled"] = True
    if args.webapi_port is not None:
        webapi["port"] = args.webapi_port
    if args.timeout is not None:
        overrides["timeout_ms"] = args.timeout
    if args.dropconn:
        overrides.update(dropconn=True, persistent=False)
    if args.persistent:
        overrides.update(persistent=True, dropconn=False)
    if args.quiet:
        overrides["verbose"] = False
    if args.debug:
        overrides.update(debug=True, verbose=True)
    for key, section in (("listen", listen), ("storage", storage), ("webapi", webapi)):
        if section:
            overrides[key] = section
    return overrides


def resolve_config(args: argparse.Namespace, env: Mapping[str, str]) -> RelayConfig:
    """Defaults, then the YAML file, then TSRELAY_* variables, then flags."""

    payload = default_relay_config().to_dict()
    if args.config is not None:
        _deep_merge(payload, load_relay_config(args.config).to_dict())

    environment: Dict[str, str] = {}
    if args.env_file is not None:
        environment.update(load_env_file(args.env_file))
    environment.update(env)
    _deep_merge(payload, relay_config_payload_from_env(environment))
    _deep_merge(payload, _flag_overrides(args))
    return RelayConfig.from_mapping(payload)


def main(argv: Optional[Sequence[str]] = None, env: Optional[Mapping[str, str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)
    except SystemExit as exc:
        # --help sale con 0 y un error de uso con 2.
        return exc.code if isinstance(exc.code, int) else 1
    if args.version:
        print(f"netdata_tsrelay v{__version__}")
        return 0

    try:
        config = resolve_config(args, os.environ if env is None else env)
    except (ValueError, FileNotFoundError) as exc:
        setup_logging()
        logger.error("Configuración inválida: %s", exc)
        return 1

    setup_logging(config.verbose, config.debug)
    logger.debug(
        "Configuración efectiva: modo=%s timeout=%d ms tabla=%s escucha=%s",
        config.mode,
        config.timeout_ms,
        config.storage.table,
        config.listen.display,
    )

    try:
        run_relay(config)
    except RelayStartupError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Relay detenido por el usuario.")
    return 0
