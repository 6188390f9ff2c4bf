import re
from typing import Iterable
from urllib.parse import urlsplit

from sitesearch.utils.url_utils import get_origin

_SCRIPT_LINK = re.compile(r"^(javascript:|mailto:|tel:|data:)", re.IGNORECASE)


def has_blocked_extension(url: str, blocked_extensions: Iterable[str]) -> bool:
    path = urlsplit(url).path.lower()
    return any(path.endswith(ext.lower()) for ext in blocked_extensions)


def is_crawlable_link(site_origin: str, url: str, blocked_extensions: Iterable[str]) -> bool:
    """Whether ``url`` belongs to the site being crawled and points at a page, not a binary file."""
    if not url or _SCRIPT_LINK.match(url):
        return False

    if has_blocked_extension(url, blocked_extensions):
        return False

    # www and default ports are ignored; other subdomains are separate sites
    return get_origin(url) == site_origin
