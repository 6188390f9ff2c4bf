import asyncio

import pytest
from tortoise.exceptions import OperationalError

from sitesearch.storage.models import Lemma, Page, Posting, Site, SiteStatus
from sitesearch.utils.config_loader import SiteConfig

EXAMPLE = SiteConfig(url="https://example.com", name="Example")


async def _frequencies(site_id):
    return {lemma.lemma: lemma.frequency for lemma in await Lemma.filter(site_id=site_id)}


async def test_reset_site_creates_then_purges(store):
    site = await store.reset_site(EXAMPLE)
    assert site.status == SiteStatus.INDEXING

    page = await store.replace_page(site.id, "/", 200, "<p>cat</p>")
    await store.save_page_lemmas(site.id, page.id, {"cat": 1})

    again = await store.reset_site(SiteConfig(url=EXAMPLE.url, name="Renamed"))

    assert again.id == site.id
    assert again.name == "Renamed"
    assert again.last_error is None
    assert await Page.filter(site_id=site.id).count() == 0
    assert await Lemma.filter(site_id=site.id).count() == 0
    assert await Posting.all().count() == 0
    assert await Site.all().count() == 1


async def test_save_page_lemmas_counts_a_page_once_and_weights_occurrences(store):
    site = await store.reset_site(EXAMPLE)
    page = await store.replace_page(site.id, "/", 200, "")

    await store.save_page_lemmas(site.id, page.id, {"cat": 3, "dog": 1})

    assert await _frequencies(site.id) == {"cat": 1, "dog": 1}
    lemmas = await store.find_lemmas(["cat", "dog"], site.id)
    weights = await store.posting_weights([page.id], [lemma.id for lemma in lemmas])
    by_text = {lemma.lemma: weights[(page.id, lemma.id)] for lemma in lemmas}
    assert by_text == {"cat": 3.0, "dog": 1.0}


async def test_concurrent_pages_never_lose_an_increment(store):
    site = await store.reset_site(EXAMPLE)
    pages = [await store.replace_page(site.id, f"/p{i}", 200, "") for i in range(20)]

    await asyncio.gather(
        *(store.save_page_lemmas(site.id, page.id, {"cat": 1, "dog": 2}) for page in pages)
    )

    assert await _frequencies(site.id) == {"cat": 20, "dog": 20}
    assert await store.count_lemmas(site.id) == 2


async def test_replace_page_rolls_back_previous_contribution(store):
    site = await store.reset_site(EXAMPLE)
    old = await store.replace_page(site.id, "/a", 200, "old")
    await store.save_page_lemmas(site.id, old.id, {"cat": 1})

    new = await store.replace_page(site.id, "/a", 200, "new")

    assert new.id != old.id
    assert await store.count_pages(site.id) == 1
    assert await _frequencies(site.id) == {"cat": 0}
    assert await store.lemma_ids_for_page(old.id) == set()


async def test_rollback_never_drives_frequency_below_zero(store):
    site = await store.reset_site(EXAMPLE)
    page = await store.replace_page(site.id, "/", 200, "")
    await store.save_page_lemmas(site.id, page.id, {"cat": 1})
    await Lemma.filter(site_id=site.id).update(frequency=0)

    await store.rollback_page_lemmas(page.id)

    assert await _frequencies(site.id) == {"cat": 0}
    assert await Posting.filter(page_id=page.id).count() == 0


async def test_site_status_transitions(store):
    site = await store.reset_site(EXAMPLE)
    other = await store.reset_site(SiteConfig(url="https://other.com", name="Other"))

    await store.mark_site_failed(site.id, "host not found")
    assert await store.mark_site_indexed(site.id) is False
    assert (await store.get_site(EXAMPLE.url)).status == SiteStatus.FAILED

    assert await store.fail_indexing_sites("stopped by operator") == 1
    other = await store.get_site(other.url)
    assert other.status == SiteStatus.FAILED
    assert other.last_error == "stopped by operator"


async def test_scoped_counts_and_lookups(store):
    site = await store.reset_site(EXAMPLE)
    other = await store.reset_site(SiteConfig(url="https://other.com", name="Other"))
    a = await store.replace_page(site.id, "/a", 200, "")
    b = await store.replace_page(other.id, "/b", 200, "")
    await store.save_page_lemmas(site.id, a.id, {"cat": 1})
    await store.save_page_lemmas(other.id, b.id, {"cat": 2})

    assert await store.count_pages() == 2
    assert await store.count_pages(site.id) == 1
    assert len(await store.find_lemmas(["cat"])) == 2
    [scoped] = await store.find_lemmas(["cat"], other.id)
    assert await store.page_ids_for_lemma(scoped.id) == {b.id}

    pages = await store.pages_with_sites([a.id, b.id])
    assert pages[b.id].site.url == "https://other.com"


async def test_failed_posting_write_leaves_frequencies_untouched(store, monkeypatch):
    site = await store.reset_site(EXAMPLE)
    page = await store.replace_page(site.id, "/", 200, "")
    await store.save_page_lemmas(site.id, page.id, {"cat": 1})

    async def failing_bulk_create(*args, **kwargs):
        raise OperationalError("posting write failed")

    monkeypatch.setattr(Posting, "bulk_create", failing_bulk_create)

    with pytest.raises(OperationalError):
        await store.save_page_lemmas(site.id, page.id, {"cat": 2, "dog": 1})

    assert await _frequencies(site.id) == {"cat": 1, "dog": 0}
    assert await Posting.filter(page_id=page.id).count() == 1


async def test_save_page_lemmas_replaces_previous_postings(store):
    site = await store.reset_site(EXAMPLE)
    page = await store.replace_page(site.id, "/", 200, "")

    await store.save_page_lemmas(site.id, page.id, {"cat": 1, "dog": 1})
    await store.save_page_lemmas(site.id, page.id, {"cat": 4})

    assert await _frequencies(site.id) == {"cat": 1, "dog": 0}
    [posting] = await Posting.filter(page_id=page.id)
    assert posting.weight == 4.0
