import argparse
import copy
import logging
import logging.config
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from uvicorn.config import LOGGING_CONFIG

from timeseriesui import vars as defaults
from timeseriesui.connections import (
    BackendType,
    Connection,
    build_from_flags,
    load_connections_file,
    merge,
)
from timeseriesui.errors import ConfigError

logger = logging.getLogger("uvicorn.error")

DEFAULT_PROXY_TIMEOUT = 30.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?B?)\s*$", re.IGNORECASE)

_LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once before the listener starts."""

    host: str = defaults.HOST
    port: int = defaults.PORT
    base_path: str = ""
    tls_cert: str = ""
    tls_key: str = ""
    log_level: str = "info"
    log_format: str = "text"
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    max_response_size: int = 50 * 1024**2
    disable_write: bool = False
    disable_admin: bool = False
    connections: Tuple[Connection, ...] = field(default_factory=tuple)
    ui_dist: str = defaults.UI_DIST
    version: str = defaults.VERSION

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)


def normalize_base_path(value: Optional[str]) -> str:
    """``tsui/`` -> ``/tsui``; empty stays empty."""
    value = (value or "").strip().rstrip("/")
    if value and not value.startswith("/"):
        value = "/" + value
    return value


def parse_duration(value: str, default: float = DEFAULT_PROXY_TIMEOUT) -> float:
    """
    Parse a Go-style duration (``30s``, ``1m30s``, ``500ms``) into seconds.

    Invalid or zero durations fall back to ``default``.
    """
    text = (value or "").strip()
    if not text:
        return default
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or total <= 0:
        logger.warning(f"Invalid proxy timeout {value!r}, using {default:g}s")
        return default
    return total


def parse_size(value: str) -> int:
    """Parse ``50MB`` style sizes (binary multiples) into bytes; 0 means no limit."""
    match = _SIZE_PATTERN.match(value or "")
    if not match:
        raise ConfigError(f"Invalid size {value!r}, expected e.g. 50MB")
    number, unit = match.groups()
    unit = unit.upper()
    if unit and not unit.endswith("B"):
        unit += "B"
    return int(float(number) * _SIZE_UNITS[unit])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timeseriesui",
        description=(
            "Serve the TimeseriesUI web interface and proxy API requests to "
            "InfluxDB, Prometheus and Alertmanager backends."
        ),
    )
    parser.add_argument("--port", type=int, default=defaults.PORT, help="Port to listen on")
    parser.add_argument("--host", default=defaults.HOST, help="Host/IP to bind to")
    parser.add_argument(
        "--base-path", default=defaults.BASE_PATH, help="Base URL path prefix, e.g. /tsui"
    )
    parser.add_argument("--tls-cert", default=defaults.TLS_CERT, help="Path to TLS certificate file")
    parser.add_argument("--tls-key", default=defaults.TLS_KEY, help="Path to TLS private key file")

    parser.add_argument(
        "--influxdb-url",
        action="append",
        default=[],
        help="Add a default InfluxDB connection (repeatable)",
    )
    parser.add_argument("--influxdb-user", default="", help="Default InfluxDB username")
    parser.add_argument("--influxdb-password", default="", help="Default InfluxDB password")
    parser.add_argument("--influxdb-name", default="", help="Display name for InfluxDB connection")

    parser.add_argument(
        "--prometheus-url",
        action="append",
        default=[],
        help="Add a default Prometheus connection (repeatable)",
    )
    parser.add_argument("--prometheus-user", default="", help="Default Prometheus basic-auth username")
    parser.add_argument(
        "--prometheus-password", default="", help="Default Prometheus basic-auth password"
    )
    parser.add_argument("--prometheus-name", default="", help="Display name for Prometheus connection")
    parser.add_argument("--alertmanager-url", default="", help="Default Alertmanager URL")

    parser.add_argument(
        "--connections", default=defaults.CONNECTIONS_FILE, help="Path to a JSON connections file"
    )
    parser.add_argument(
        "--log-level",
        default=defaults.LOG_LEVEL,
        choices=sorted(_LOG_LEVELS),
        help="Log verbosity",
    )
    parser.add_argument(
        "--log-format", default=defaults.LOG_FORMAT, choices=["text", "json"], help="Log format"
    )
    parser.add_argument(
        "--proxy-timeout", default=defaults.PROXY_TIMEOUT, help="Timeout for proxied API requests"
    )
    parser.add_argument(
        "--max-response-size", default=defaults.MAX_RESPONSE_SIZE, help="Max proxied response size"
    )
    parser.add_argument(
        "--disable-write", action="store_true", default=defaults.DISABLE_WRITE,
        help="Disable the Write Data feature",
    )
    parser.add_argument(
        "--disable-admin", action="store_true", default=defaults.DISABLE_ADMIN,
        help="Disable admin/destructive operations",
    )
    parser.add_argument(
        "--readonly", action="store_true", default=defaults.READONLY,
        help="Shorthand for --disable-write --disable-admin",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    return parser


def collect_connections(args: argparse.Namespace) -> List[Connection]:
    file_connections: List[Connection] = []
    if args.connections:
        file_connections = load_connections_file(args.connections)

    flag_connections = build_from_flags(
        args.influxdb_url,
        args.influxdb_user,
        args.influxdb_password,
        args.influxdb_name,
        BackendType.INFLUXDB,
    )
    flag_connections += build_from_flags(
        args.prometheus_url,
        args.prometheus_user,
        args.prometheus_password,
        args.prometheus_name,
        BackendType.PROMETHEUS,
        alertmanager_url=args.alertmanager_url or None,
    )
    if args.alertmanager_url and not args.prometheus_url:
        logger.warning(
            "--alertmanager-url specified without --prometheus-url; it won't be used."
        )
    return merge(file_connections, flag_connections)


def settings_from_args(args: argparse.Namespace) -> Settings:
    if bool(args.tls_cert) != bool(args.tls_key):
        raise ConfigError("--tls-cert and --tls-key must be given together")

    return Settings(
        host=args.host,
        port=args.port,
        base_path=normalize_base_path(args.base_path),
        tls_cert=args.tls_cert,
        tls_key=args.tls_key,
        log_level=args.log_level,
        log_format=args.log_format,
        proxy_timeout=parse_duration(args.proxy_timeout),
        max_response_size=parse_size(args.max_response_size),
        disable_write=args.disable_write or args.readonly,
        disable_admin=args.disable_admin or args.readonly,
        connections=tuple(collect_connections(args)),
    )


def parse_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    return settings_from_args(build_parser().parse_args(argv))


def build_log_config(level: str, fmt: str) -> Dict[str, Any]:
    """uvicorn's logging config with our level, and ECS JSON output for ``json``."""
    config = copy.deepcopy(LOGGING_CONFIG)
    level_name = _LOG_LEVELS.get(level.lower(), "INFO")
    if fmt == "json":
        for name in config["formatters"]:
            config["formatters"][name] = {"()": "ecs_logging.StdlibFormatter"}
    for name in ("uvicorn", "uvicorn.error"):
        config["loggers"].setdefault(name, {})["level"] = level_name
    return config


def configure_logging(level: str, fmt: str) -> Dict[str, Any]:
    config = build_log_config(level, fmt)
    logging.config.dictConfig(config)
    return config
