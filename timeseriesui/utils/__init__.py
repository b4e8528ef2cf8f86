from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

SECRET_QUERY_PARAMS = {"p", "password"}


def mask_url(url: str) -> str:
    """Hide userinfo passwords and ``p=`` query values before a URL is logged."""
    if not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparseable url>"
    netloc = parts.netloc
    if "@" in netloc:
        userinfo, host = netloc.rsplit("@", 1)
        user = userinfo.split(":", 1)[0]
        netloc = f"{user}:****@{host}" if ":" in userinfo else f"{user}@{host}"
    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        if any(k in SECRET_QUERY_PARAMS for k, _ in pairs):
            query = urlencode(
                [(k, "****" if k in SECRET_QUERY_PARAMS else v) for k, v in pairs]
            )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))
