from __future__ import annotations

from typing import List

from bs4 import BeautifulSoup

from sitesearch.utils.url_utils import resolve_link

_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


def _soup(html: str | None) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def extract_title(html: str | None) -> str:
    soup = _soup(html)
    if soup.title and soup.title.string:
        return " ".join(soup.title.string.split())
    return ""


def extract_text(html: str | None) -> str:
    """
    Plain text of the document with whitespace collapsed; input for lemma
    collection and snippets.
    """
    soup = _soup(html)
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return " ".join(text.split())


def extract_links(base_url: str, html: str | None) -> List[str]:
    """
    Absolute http(s) targets of every ``<a href>``, without fragments,
    in document order and without duplicates.
    """
    links: List[str] = []
    seen = set()

    for tag in _soup(html).find_all("a", href=True):
        link = resolve_link(base_url, tag["href"])
        if link is None or link in seen:
            continue
        seen.add(link)
        links.append(link)

    return links
