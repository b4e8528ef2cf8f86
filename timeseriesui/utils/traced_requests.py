import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from timeseriesui.utils import mask_url

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_proxy_request(
    tracer: Tracer,
    operation: str,
    method: str,
    target_url: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common proxy attributes, and log the hop."""
    masked = mask_url(target_url)
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("proxy.method", method)
        span.set_attribute("proxy.target_url", masked)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.debug(f"[Proxy] {method} -> {masked}")
        yield span
