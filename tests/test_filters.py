from sitesearch.utils.config_loader import DEFAULT_BLOCKED_EXTENSIONS
from sitesearch.utils.filters import has_blocked_extension, is_crawlable_link

ORIGIN = "https://example.com"


def test_is_crawlable_link_accepts_internal_pages():
    assert is_crawlable_link(ORIGIN, "https://example.com/articles/intro", DEFAULT_BLOCKED_EXTENSIONS)
    assert is_crawlable_link(ORIGIN, "https://www.example.com/articles", DEFAULT_BLOCKED_EXTENSIONS)


def test_is_crawlable_link_rejects_assets_and_external_origins():
    assert not is_crawlable_link(ORIGIN, "https://example.com/image.JPG", DEFAULT_BLOCKED_EXTENSIONS)
    assert not is_crawlable_link(ORIGIN, "https://external.com/page", DEFAULT_BLOCKED_EXTENSIONS)
    assert not is_crawlable_link(ORIGIN, "https://shop.example.com/page", DEFAULT_BLOCKED_EXTENSIONS)
    assert not is_crawlable_link(ORIGIN, "http://example.com/page", DEFAULT_BLOCKED_EXTENSIONS)
    assert not is_crawlable_link(ORIGIN, "javascript:alert('x')", DEFAULT_BLOCKED_EXTENSIONS)


def test_has_blocked_extension_looks_at_path_only():
    assert has_blocked_extension("https://example.com/file.pdf?download=1", [".pdf"])
    assert not has_blocked_extension("https://example.com/view?file=a.pdf", [".pdf"])
