import re
from typing import Optional
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

MAX_PATH_LENGTH = 512

DEFAULT_PORTS = {"http": 80, "https": 443}

_TRACKING_PARAMS = re.compile(r"(utm_[^=&]+|sessionid|fbclid|gclid)=[^&]*", re.IGNORECASE)


def _clean_tracking_params(query: str) -> str:
    clean_query = _TRACKING_PARAMS.sub("", query)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def strip_www(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def get_origin(url: str) -> Optional[str]:
    """Scheme, host without ``www.`` and non-default port, e.g. ``https://example.com:8443``.

    Returns None for anything that is not an absolute http(s) URL.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except (ValueError, AttributeError):
        return None

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parts.hostname:
        return None

    origin = f"{scheme}://{strip_www(parts.hostname)}"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        origin = f"{origin}:{port}"
    return origin


def is_same_origin(url1: str, url2: str) -> bool:
    origin = get_origin(url1)
    return origin is not None and origin == get_origin(url2)


def canonical_url(url: str) -> str:
    """Key used by the visited set: the origin plus path and query, ``/`` for an empty path.

    ``http://www.example.com/a#top`` and ``http://example.com:80/a`` share a key.
    """
    defragged, _ = urldefrag(url.strip())
    parts = urlsplit(defragged)
    path = parts.path or "/"
    origin = get_origin(defragged)
    if origin is None:
        return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))
    return f"{origin}{path}" + (f"?{parts.query}" if parts.query else "")


def resolve_link(base_url: str, href: str) -> Optional[str]:
    """Resolve an ``href`` against the page URL; None for non-http(s) or fragment-only links."""
    raw_link = (href or "").strip()
    if not raw_link or raw_link.startswith("#"):
        return None

    url = urljoin(base_url, raw_link)
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return None

    query = _clean_tracking_params(parts.query)
    return urlunsplit((parts.scheme, parts.netloc.lower(), parts.path or "/", query, ""))


def site_relative_path(url: str, max_length: int = MAX_PATH_LENGTH) -> str:
    """Path plus ``?query`` of ``url``, always starting with ``/`` and cut to ``max_length``."""
    parts = urlsplit(url)
    path = parts.path or "/"
    if not path.startswith("/"):
        path = "/" + path
    if parts.query:
        path = f"{path}?{parts.query}"
    return path[:max_length]


def toggle_www(url: str) -> Optional[str]:
    """Same URL with the ``www.`` prefix added or removed; None when there is no host."""
    parts = urlsplit(url)
    host = parts.hostname
    if not host:
        return None

    alt_host = host[4:] if host.lower().startswith("www.") else f"www.{host}"
    netloc = alt_host if parts.port is None else f"{alt_host}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
