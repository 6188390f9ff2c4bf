from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, TypeVar

from loguru import logger
from tortoise import timezone
from tortoise.exceptions import IntegrityError
from tortoise.expressions import F, Subquery
from tortoise.transactions import in_transaction

from sitesearch.storage.models import Lemma, Page, Posting, Site, SiteStatus
from sitesearch.utils.config_loader import SiteConfig

T = TypeVar("T")

# keeps IN (...) lists below SQLite's bound-parameter limit
CHUNK_SIZE = 500
LEMMA_CREATE_ATTEMPTS = 3


def _chunks(items: Sequence[T], size: int = CHUNK_SIZE) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _on(queryset, conn):
    return queryset if conn is None else queryset.using_db(conn)


class IndexStore:
    """Reads and writes of sites, pages, lemmas and postings.

    Lemma frequencies are only ever changed with single ``UPDATE ... SET
    frequency = frequency +/- 1`` statements, so concurrent tasks indexing
    different pages of one site never lose an increment.
    """

    # -------------------------------------------------------
    # Sites
    # -------------------------------------------------------

    async def get_site(self, url: str) -> Optional[Site]:
        return await Site.get_or_none(url=url)

    async def list_sites(self) -> List[Site]:
        return await Site.all().order_by("id")

    async def reset_site(self, site_config: SiteConfig) -> Site:
        """Create the site or wipe its index, then mark it INDEXING."""
        site = await self.get_site(site_config.url)
        if site is None:
            return await Site.create(
                url=site_config.url,
                name=site_config.name,
                status=SiteStatus.INDEXING,
                status_time=timezone.now(),
                last_error=None,
            )

        await self.purge_site(site.id)
        site.name = site_config.name
        site.status = SiteStatus.INDEXING
        site.status_time = timezone.now()
        site.last_error = None
        await site.save()
        return site

    async def get_or_create_site(self, site_config: SiteConfig) -> Site:
        site, _ = await Site.get_or_create(
            url=site_config.url,
            defaults={
                "name": site_config.name,
                "status": SiteStatus.INDEXING,
                "status_time": timezone.now(),
            },
        )
        return site

    async def purge_site(self, site_id: int) -> None:
        page_ids = Subquery(Page.filter(site_id=site_id).values("id"))
        async with in_transaction() as conn:
            await Posting.filter(page_id__in=page_ids).using_db(conn).delete()
            await Lemma.filter(site_id=site_id).using_db(conn).delete()
            await Page.filter(site_id=site_id).using_db(conn).delete()
        logger.info(f"Purged pages, lemmas and postings of site #{site_id}")

    async def set_site_status(self, site_id: int, status: SiteStatus, error: Optional[str] = None) -> None:
        await Site.filter(id=site_id).update(
            status=status,
            last_error=error,
            status_time=timezone.now(),
        )

    async def mark_site_failed(self, site_id: int, message: str) -> None:
        await self.set_site_status(site_id, SiteStatus.FAILED, message)

    async def mark_site_indexed(self, site_id: int) -> bool:
        """INDEXING -> INDEXED; a site that already failed keeps its status."""
        updated = await Site.filter(id=site_id, status=SiteStatus.INDEXING).update(
            status=SiteStatus.INDEXED,
            status_time=timezone.now(),
        )
        return updated > 0

    async def fail_indexing_sites(self, message: str) -> int:
        return await Site.filter(status=SiteStatus.INDEXING).update(
            status=SiteStatus.FAILED,
            last_error=message,
            status_time=timezone.now(),
        )

    # -------------------------------------------------------
    # Pages
    # -------------------------------------------------------

    async def find_page(self, site_id: int, path: str) -> Optional[Page]:
        return await Page.filter(site_id=site_id, path=path).first()

    async def replace_page(self, site_id: int, path: str, code: int, content: str) -> Page:
        """Store a page, first removing any previous page at the same path and its lemma contribution."""
        async with in_transaction() as conn:
            old_page = await Page.filter(site_id=site_id, path=path).using_db(conn).first()
            if old_page is not None:
                await self._rollback_page_lemmas(old_page.id, conn)
                await old_page.delete(using_db=conn)

            return await Page.create(
                site_id=site_id,
                path=path,
                code=code,
                content=content,
                using_db=conn,
            )

    async def rollback_page_lemmas(self, page_id: int) -> None:
        """Decrement (floored at 0) every lemma the page contributed to and drop its postings."""
        await self._rollback_page_lemmas(page_id, None)

    async def _rollback_page_lemmas(self, page_id: int, conn) -> None:
        lemma_ids = await _on(Posting.filter(page_id=page_id), conn).values_list("lemma_id", flat=True)
        for chunk in _chunks(list(lemma_ids)):
            await _on(Lemma.filter(id__in=chunk, frequency__gt=0), conn).update(
                frequency=F("frequency") - 1
            )
        await _on(Posting.filter(page_id=page_id), conn).delete()

    async def count_pages(self, site_id: Optional[int] = None) -> int:
        query = Page.all() if site_id is None else Page.filter(site_id=site_id)
        return await query.count()

    async def pages_with_sites(self, page_ids: Iterable[int]) -> Dict[int, Page]:
        pages: Dict[int, Page] = {}
        for chunk in _chunks(list(page_ids)):
            for page in await Page.filter(id__in=chunk).select_related("site"):
                pages[page.id] = page
        return pages

    # -------------------------------------------------------
    # Lemmas and postings
    # -------------------------------------------------------

    async def save_page_lemmas(self, site_id: int, page_id: int, counts: Dict[str, int]) -> None:
        """Replace the page's postings with ``counts`` (weight = occurrences).

        The rollback of the previous postings, the ``+1`` per lemma and the new
        postings commit together. Missing lemma rows are created beforehand
        with frequency 0.
        """
        texts = list(counts)
        lemma_ids: Dict[str, int] = {}
        for chunk in _chunks(texts):
            for lemma in await Lemma.filter(site_id=site_id, lemma__in=chunk):
                lemma_ids[lemma.lemma] = lemma.id

        for text in texts:
            if text not in lemma_ids:
                lemma_ids[text] = await self._get_or_create_lemma_id(site_id, text)

        async with in_transaction() as conn:
            await self._rollback_page_lemmas(page_id, conn)

            for chunk in _chunks(list(lemma_ids.values())):
                await Lemma.filter(id__in=chunk).using_db(conn).update(frequency=F("frequency") + 1)

            if counts:
                await Posting.bulk_create(
                    [
                        Posting(page_id=page_id, lemma_id=lemma_ids[text], weight=float(count))
                        for text, count in counts.items()
                    ],
                    batch_size=CHUNK_SIZE,
                    using_db=conn,
                )

    async def _get_or_create_lemma_id(self, site_id: int, text: str) -> int:
        # Another task may insert the same (site, lemma) between our read and
        # our insert; the unique constraint rejects one of them and it re-reads.
        for _ in range(LEMMA_CREATE_ATTEMPTS):
            try:
                lemma = await Lemma.create(site_id=site_id, lemma=text, frequency=0)
                return lemma.id
            except IntegrityError:
                existing = await Lemma.filter(site_id=site_id, lemma=text).first()
                if existing is not None:
                    return existing.id
        raise IntegrityError(f"could not create lemma {text!r} for site #{site_id}")

    async def count_lemmas(self, site_id: Optional[int] = None) -> int:
        query = Lemma.all() if site_id is None else Lemma.filter(site_id=site_id)
        return await query.count()

    async def find_lemmas(self, texts: Sequence[str], site_id: Optional[int] = None) -> List[Lemma]:
        lemmas: List[Lemma] = []
        for chunk in _chunks(list(texts)):
            query = Lemma.filter(lemma__in=chunk)
            if site_id is not None:
                query = query.filter(site_id=site_id)
            lemmas.extend(await query)
        return lemmas

    async def page_ids_for_lemma(self, lemma_id: int) -> Set[int]:
        return set(await Posting.filter(lemma_id=lemma_id).values_list("page_id", flat=True))

    async def lemma_ids_for_page(self, page_id: int) -> Set[int]:
        return set(await Posting.filter(page_id=page_id).values_list("lemma_id", flat=True))

    async def posting_weights(
        self, page_ids: Iterable[int], lemma_ids: Iterable[int]
    ) -> Dict[Tuple[int, int], float]:
        lemma_id_list = list(lemma_ids)
        weights: Dict[Tuple[int, int], float] = {}
        for chunk in _chunks(list(page_ids)):
            rows = await Posting.filter(page_id__in=chunk, lemma_id__in=lemma_id_list).values_list(
                "page_id", "lemma_id", "weight"
            )
            for page_id, lemma_id, weight in rows:
                weights[(page_id, lemma_id)] = weight
        return weights
