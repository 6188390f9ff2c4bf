from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger

from sitesearch.monitoring.metrics_server import SEARCH_REQUESTS
from sitesearch.morphology.lemma_processor import LemmaProcessor
from sitesearch.parsing.html_extractor import extract_text, extract_title
from sitesearch.responses import SearchResponse, SearchResultItem
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.models import Lemma, Page
from sitesearch.utils.config_loader import AppConfig

EMPTY_QUERY = "empty query"
NO_MEANINGFUL_TERMS = "no meaningful terms"
NO_SUITABLE_TERMS = "no suitable terms"

ELLIPSIS = "..."
HIGHLIGHT_OPEN = "<b>"
HIGHLIGHT_CLOSE = "</b>"

# Too frequent to discriminate between pages, in either language.
STOP_LEMMAS = frozenset(
    {
        "и", "в", "во", "не", "на", "я", "с", "со", "как", "а",
        "то", "все", "она", "так", "его", "но",
        "the", "and", "to", "of", "in", "a", "is", "it", "for", "on", "that",
        "with", "as", "at", "by", "an", "be", "this", "from", "or",
    }
)


def collect_terms(lemmas: Iterable[str], query: str) -> List[str]:
    """Query lemmas plus the raw query words longer than one character, lowercased, deduplicated."""
    terms: Dict[str, None] = {}
    for lemma in lemmas:
        lemma = lemma.strip().lower()
        if lemma:
            terms[lemma] = None
    for word in re.findall(r"[^\W_]+", query.lower()):
        if len(word) > 1:
            terms[word] = None
    return list(terms)


def term_pattern(terms: Sequence[str]) -> Optional[re.Pattern]:
    if not terms:
        return None
    # longest first so "cats" wins over "cat" inside the alternation
    alternation = "|".join(re.escape(term) for term in sorted(terms, key=len, reverse=True))
    return re.compile(rf"\b({alternation})\b", re.IGNORECASE)


def merge_windows(windows: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def shorten(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + ELLIPSIS


def highlight(text: str, pattern: re.Pattern) -> str:
    return pattern.sub(lambda m: f"{HIGHLIGHT_OPEN}{m.group(0)}{HIGHLIGHT_CLOSE}", text)


def build_snippet(
    text: str,
    terms: Sequence[str],
    *,
    half_window: int = 80,
    max_fragments: int = 2,
    max_length: int = 320,
) -> str:
    """Fragments of ``text`` around the query terms, with the terms wrapped in ``<b>``.

    ``max_length`` limits the visible text; highlight markup is added after cutting.
    """
    pattern = term_pattern(terms)
    if pattern is None:
        return shorten(text, half_window * 2)

    windows = [
        (max(0, m.start() - half_window), min(len(text), m.end() + half_window))
        for m in pattern.finditer(text)
    ]
    if not windows:
        return shorten(text, half_window * 2)

    fragments = []
    for start, end in merge_windows(windows)[:max_fragments]:
        fragment = text[start:end].strip()
        if start > 0:
            fragment = f"{ELLIPSIS} {fragment}"
        if end < len(text):
            fragment = f"{fragment} {ELLIPSIS}"
        fragments.append(fragment)

    return highlight(shorten(f" {ELLIPSIS} ".join(fragments), max_length), pattern)


class SearchEngine:
    """Ranks pages of one site (or all sites) for a query and annotates them with snippets."""

    def __init__(
        self,
        store: Optional[IndexStore] = None,
        lemma_processor: Optional[LemmaProcessor] = None,
        *,
        too_common_fraction: float = 0.6,
        snippet_half_window: int = 80,
        snippet_max_fragments: int = 2,
        snippet_max_length: int = 320,
    ):
        self.store = store or IndexStore()
        self.lemma_processor = lemma_processor or LemmaProcessor(self.store)
        self.too_common_fraction = too_common_fraction
        self.snippet_half_window = snippet_half_window
        self.snippet_max_fragments = snippet_max_fragments
        self.snippet_max_length = snippet_max_length

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: Optional[IndexStore] = None,
        lemma_processor: Optional[LemmaProcessor] = None,
    ) -> "SearchEngine":
        return cls(
            store,
            lemma_processor,
            too_common_fraction=config.too_common_fraction,
            snippet_half_window=config.snippet_half_window,
            snippet_max_fragments=config.snippet_max_fragments,
            snippet_max_length=config.snippet_max_length,
        )

    async def search(
        self,
        query: Optional[str],
        site_url: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> SearchResponse:
        response = await self._search(query, (site_url or "").strip() or None, max(0, offset), max(0, limit))
        if not response.success:
            outcome = "error"
        else:
            outcome = "ok" if response.total_count else "empty"
        SEARCH_REQUESTS.labels(outcome=outcome).inc()
        return response

    async def _search(self, query: Optional[str], site_url: Optional[str], offset: int, limit: int) -> SearchResponse:
        if query is None or not query.strip():
            return SearchResponse.fail(EMPTY_QUERY)

        query_lemmas = [
            lemma for lemma in self.lemma_processor.collect_lemmas(query) if lemma not in STOP_LEMMAS
        ]
        if not query_lemmas:
            return SearchResponse.fail(NO_MEANINGFUL_TERMS)

        site_id = None
        if site_url is not None:
            site = await self.store.get_site(site_url)
            if site is None:
                return SearchResponse.ok()
            site_id = site.id

        lemmas = await self.store.find_lemmas(query_lemmas, site_id)
        if not lemmas:
            return SearchResponse.ok()

        total_pages = await self.store.count_pages(site_id)
        threshold = self.too_common_fraction * total_pages
        lemmas = sorted(
            (lemma for lemma in lemmas if lemma.frequency <= threshold),
            key=lambda lemma: (lemma.frequency, lemma.id),
        )
        if not lemmas:
            return SearchResponse.fail(NO_SUITABLE_TERMS)

        candidates = await self._candidate_pages(lemmas)
        if not candidates:
            return SearchResponse.ok()

        relevance = await self._absolute_relevance(candidates, lemmas)
        max_relevance = max(relevance.values())
        ranked = sorted(relevance.items(), key=lambda item: (-item[1], item[0]))
        window = ranked[offset : offset + limit]

        pages = await self.store.pages_with_sites(page_id for page_id, _ in window)
        lemma_texts = [lemma.lemma for lemma in lemmas]
        terms = collect_terms(lemma_texts, query)
        items = [
            self._to_item(pages[page_id], score / max_relevance if max_relevance > 0 else 0.0, terms, lemma_texts)
            for page_id, score in window
        ]

        logger.debug(f"Search {query!r} (site={site_url}): {len(ranked)} page(s)")
        return SearchResponse.ok(total_count=len(ranked), items=items)

    async def _candidate_pages(self, lemmas: List[Lemma]) -> Set[int]:
        """Per site, pages containing every query lemma of that site; union over sites."""
        by_site: Dict[int, List[Lemma]] = {}
        for lemma in lemmas:
            by_site.setdefault(lemma.site_id, []).append(lemma)

        candidates: Set[int] = set()
        for site_lemmas in by_site.values():
            pages: Optional[Set[int]] = None
            # rarest first keeps the running intersection small
            for lemma in site_lemmas:
                lemma_pages = await self.store.page_ids_for_lemma(lemma.id)
                pages = lemma_pages if pages is None else pages & lemma_pages
                if not pages:
                    break
            candidates |= pages or set()
        return candidates

    async def _absolute_relevance(self, page_ids: Set[int], lemmas: List[Lemma]) -> Dict[int, float]:
        weights = await self.store.posting_weights(page_ids, [lemma.id for lemma in lemmas])
        return {
            page_id: sum(weights.get((page_id, lemma.id), 0.0) for lemma in lemmas)
            for page_id in page_ids
        }

    def _to_item(
        self, page: Page, relevance: float, terms: Sequence[str], lemmas: Sequence[str]
    ) -> SearchResultItem:
        site = page.site
        text = extract_text(page.content)
        # other inflections of the query words on this page
        page_terms = list(terms) + sorted(self.lemma_processor.matching_words(text, lemmas) - set(terms))
        return SearchResultItem(
            site_root=site.url,
            site_name=site.name,
            path=page.path,
            title=extract_title(page.content),
            snippet=build_snippet(
                text,
                page_terms,
                half_window=self.snippet_half_window,
                max_fragments=self.snippet_max_fragments,
                max_length=self.snippet_max_length,
            ),
            relevance_score=relevance,
        )
