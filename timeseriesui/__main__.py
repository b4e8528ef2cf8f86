import logging
import sys
from typing import Optional, Sequence

import uvicorn

from timeseriesui.config import Settings, build_parser, configure_logging, settings_from_args
from timeseriesui.errors import ConfigError
from timeseriesui.server import create_app
from timeseriesui.tracing import configure_tracing
from timeseriesui.utils import mask_url
from timeseriesui.vars import VERSION

logger = logging.getLogger("uvicorn.error")


def log_startup(settings: Settings) -> None:
    scheme = "https" if settings.tls_enabled else "http"
    display_host = settings.host
    if display_host in ("", "0.0.0.0"):
        display_host = "localhost"
    logger.info(
        f"TimeseriesUI {settings.version} starting on "
        f"{scheme}://{display_host}:{settings.port}{settings.base_path}/ui/"
    )
    if settings.connections:
        for c in settings.connections:
            logger.info(f"  [{c.type}] {c.name} -> {mask_url(c.url)}")
    else:
        logger.info("No default connections, add them in the UI.")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if args.version:
        print(f"timeseriesui {VERSION}")
        return

    log_config = configure_logging(args.log_level, args.log_format)
    try:
        settings = settings_from_args(args)
        configure_tracing()
        app = create_app(settings)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    log_startup(settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        ssl_certfile=settings.tls_cert or None,
        ssl_keyfile=settings.tls_key or None,
        log_config=log_config,
    )


if __name__ == "__main__":
    main()
