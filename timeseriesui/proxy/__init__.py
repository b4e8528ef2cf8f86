from .resolver import (
    HeaderTargetResolver,
    QueryParamTargetResolver,
    ResolvedTarget,
    TargetResolver,
)
from .forwarder import ProxyForwarder
from .route import build_proxy_router

__all__ = [
    "HeaderTargetResolver",
    "QueryParamTargetResolver",
    "ResolvedTarget",
    "TargetResolver",
    "ProxyForwarder",
    "build_proxy_router",
]
