import pytest

from sitesearch.utils.url_utils import (
    canonical_url,
    get_origin,
    is_same_origin,
    resolve_link,
    site_relative_path,
    toggle_www,
)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://Example.com/page", "https://example.com"),
        ("https://www.example.com", "https://example.com"),
        ("http://example.com:80/a", "http://example.com"),
        ("https://example.com:8443/a", "https://example.com:8443"),
        ("ftp://example.com/file", None),
        ("not-a-url", None),
        ("http://example.com:99999/", None),
    ],
)
def test_get_origin(url, expected):
    assert get_origin(url) == expected


def test_is_same_origin_ignores_www_but_not_subdomains():
    assert is_same_origin("https://www.example.com/a", "https://example.com/b")
    assert not is_same_origin("https://blog.example.com", "https://example.com")
    assert not is_same_origin("http://example.com", "https://example.com")


def test_canonical_url_drops_fragment_www_and_default_port():
    assert canonical_url("http://WWW.Example.com:80/a#top") == "http://example.com/a"
    assert canonical_url("https://example.com") == "https://example.com/"
    assert canonical_url("https://example.com/?q=1") == "https://example.com/?q=1"


def test_resolve_link_resolves_relative_and_cleans_tracking():
    resolved = resolve_link(
        "https://example.com/base/",
        "/path/?utm_source=test&utm_medium=ad&page=2#section",
    )
    assert resolved == "https://example.com/path/?page=2"


def test_resolve_link_rejects_fragments_and_other_schemes():
    assert resolve_link("https://example.com", "#top") is None
    assert resolve_link("https://example.com", "ftp://example.com/file") is None
    assert resolve_link("https://example.com", "mailto:a@example.com") is None


def test_site_relative_path():
    assert site_relative_path("https://example.com") == "/"
    assert site_relative_path("https://example.com/a/b?x=1") == "/a/b?x=1"
    assert site_relative_path("https://example.com/" + "x" * 20, max_length=10) == "/xxxxxxxxx"


def test_toggle_www():
    assert toggle_www("https://example.com/a?b=1") == "https://www.example.com/a?b=1"
    assert toggle_www("https://www.example.com:8443/a") == "https://example.com:8443/a"
    assert toggle_www("not-a-url") is None
