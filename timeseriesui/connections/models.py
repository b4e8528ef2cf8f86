from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator

ALLOWED_SCHEMES = ("http", "https")


class BackendType(str, Enum):
    INFLUXDB = "influxdb"
    PROMETHEUS = "prometheus"
    ALERTMANAGER = "alertmanager"

    @property
    def label(self) -> str:
        return {
            BackendType.INFLUXDB: "InfluxDB",
            BackendType.PROMETHEUS: "Prometheus",
            BackendType.ALERTMANAGER: "Alertmanager",
        }[self]


def is_http_url(value: str) -> bool:
    """True when ``value`` is an absolute http:// or https:// URL."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.netloc)


class Connection(BaseModel):
    """One configured backend. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    name: str
    type: BackendType
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    defaultDatabase: Optional[str] = None
    alertmanagerUrl: Optional[str] = None
    alertmanagerUsername: Optional[str] = None
    alertmanagerPassword: Optional[str] = None
    source: str = "cli"

    @field_validator("url")
    @classmethod
    def _url_must_be_http(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError(f"url must be an absolute http(s) URL, got {value!r}")
        return value

    @field_validator("alertmanagerUrl")
    @classmethod
    def _alertmanager_url_must_be_http(cls, value: Optional[str]) -> Optional[str]:
        if value and not is_http_url(value):
            raise ValueError(
                f"alertmanagerUrl must be an absolute http(s) URL, got {value!r}"
            )
        return value or None

    def to_json(self) -> dict:
        return self.model_dump(exclude_none=True)


class ConnectionsFile(BaseModel):
    connections: List[Connection] = []
