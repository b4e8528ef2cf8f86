from .models import (
    BackendType,
    Connection,
    ConnectionsFile,
    is_http_url,
)
from .loader import (
    build_from_flags,
    first_of_type,
    load_connections_file,
    merge,
    name_from_url,
)

__all__ = [
    "BackendType",
    "Connection",
    "ConnectionsFile",
    "build_from_flags",
    "first_of_type",
    "is_http_url",
    "load_connections_file",
    "merge",
    "name_from_url",
]
