"""
Startup loading of default connections.

Connections come from two places: an optional JSON file
(``{"connections": [...]}``) and repeatable command-line URL flags. Both are
merged into one ordered list, file entries first.
"""

import json
import logging
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from pydantic import ValidationError

from timeseriesui.connections.models import BackendType, Connection, ConnectionsFile
from timeseriesui.errors import ConfigError

logger = logging.getLogger("uvicorn.error")

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def load_connections_file(path: str) -> List[Connection]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as e:
        raise ConfigError(f"Failed to read connections file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse connections file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Failed to parse connections file {path}: expected a JSON object"
        )

    try:
        parsed = ConnectionsFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid connections file {path}: {_format_validation_error(e)}"
        ) from e

    connections = [c.model_copy(update={"source": "cli"}) for c in parsed.connections]
    logger.debug(f"Loaded {len(connections)} connection(s) from {path}")
    return connections


def name_from_url(raw_url: str, backend_type: BackendType) -> str:
    """Display name derived from the URL host, e.g. ``InfluxDB (local)``."""
    label = BackendType(backend_type).label
    try:
        host = urlparse(raw_url).hostname
    except ValueError:
        return label
    if not host:
        return label
    if host in LOOPBACK_HOSTS:
        return f"{label} (local)"
    return f"{label} ({host})"


def build_from_flags(
    urls: Sequence[str],
    username: Optional[str],
    password: Optional[str],
    name: Optional[str],
    backend_type: BackendType,
    alertmanager_url: Optional[str] = None,
) -> List[Connection]:
    """
    Build connections from repeated ``--<type>-url`` flags.

    Every URL shares the same credentials. Names are synthesized from the URL
    host unless ``name`` is given; with several URLs a 1-based index suffix
    keeps them distinct. ``alertmanager_url`` is linked to the first entry.
    """
    connections: List[Connection] = []
    for i, url in enumerate(urls):
        display_name = name or name_from_url(url, backend_type)
        if len(urls) > 1:
            display_name = f"{display_name} {i + 1}"
        fields = {
            "name": display_name,
            "type": backend_type,
            "url": url,
            "username": username or None,
            "password": password or None,
            "source": "cli",
        }
        if alertmanager_url and i == 0:
            fields["alertmanagerUrl"] = alertmanager_url
        try:
            connections.append(Connection(**fields))
        except ValidationError as e:
            raise ConfigError(
                f"Invalid --{BackendType(backend_type).value}-url {url!r}: "
                f"{_format_validation_error(e)}"
            ) from e
    return connections


def merge(
    file_connections: Iterable[Connection], flag_connections: Iterable[Connection]
) -> List[Connection]:
    return list(file_connections) + list(flag_connections)


def first_of_type(
    connections: Iterable[Connection], backend_type: BackendType
) -> Optional[Connection]:
    return next((c for c in connections if c.type == backend_type), None)
