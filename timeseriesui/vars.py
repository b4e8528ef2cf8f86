import os

from timeseriesui import __version__

SERVICE_NAME = os.getenv("SERVICE_NAME", "timeseriesui")
VERSION = os.getenv("TSUI_VERSION", __version__)

HOST = os.environ.get("TSUI_HOST", "0.0.0.0")
PORT = int(os.environ.get("TSUI_PORT", "8080"))
BASE_PATH = os.environ.get("TSUI_BASE_PATH", "")
TLS_CERT = os.environ.get("TSUI_TLS_CERT", "")
TLS_KEY = os.environ.get("TSUI_TLS_KEY", "")

CONNECTIONS_FILE = os.environ.get("TSUI_CONNECTIONS", "")
LOG_LEVEL = os.environ.get("TSUI_LOG_LEVEL", "info")
LOG_FORMAT = os.environ.get("TSUI_LOG_FORMAT", "text")

PROXY_TIMEOUT = os.environ.get("TSUI_PROXY_TIMEOUT", "30s")
MAX_RESPONSE_SIZE = os.environ.get("TSUI_MAX_RESPONSE_SIZE", "50MB")

DISABLE_WRITE = os.getenv("TSUI_DISABLE_WRITE", "false").lower() == "true"
DISABLE_ADMIN = os.getenv("TSUI_DISABLE_ADMIN", "false").lower() == "true"
READONLY = os.getenv("TSUI_READONLY", "false").lower() == "true"

# Built SPA assets; defaults to the bundle shipped inside the package
UI_DIST = os.getenv(
    "TSUI_UI_DIST", os.path.join(os.path.dirname(__file__), "ui", "dist")
)

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
