from __future__ import annotations

import re
from collections import Counter
from typing import Collection, Dict, Optional, Set

from loguru import logger

from sitesearch.morphology.analyzers import Analysis, EnglishAnalyzer, RussianAnalyzer, is_cyrillic
from sitesearch.parsing.html_extractor import extract_text
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.models import MAX_LEMMA_LENGTH, Page, Site

MIN_WORD_LENGTH = 2

# runs of letters; digits, underscores and punctuation separate words
_WORD = re.compile(r"[^\W\d_]+")


class LemmaProcessor:
    """Turns text into lemma counts and writes them into the index."""

    def __init__(
        self,
        store: Optional[IndexStore] = None,
        russian: Optional[RussianAnalyzer] = None,
        english: Optional[EnglishAnalyzer] = None,
    ):
        self.store = store or IndexStore()
        self.russian = russian or RussianAnalyzer()
        self.english = english or EnglishAnalyzer()

    def analyze(self, word: str) -> Optional[Analysis]:
        analyzer = self.russian if is_cyrillic(word) else self.english
        return analyzer.analyze(word)

    def collect_lemmas(self, text: str | None) -> Dict[str, int]:
        """Lemma -> number of occurrences in ``text``, function words excluded."""
        lemmas: Counter = Counter()
        plain = " ".join((text or "").split())

        for word in _WORD.findall(plain.lower()):
            # must fit the lemma column
            if not MIN_WORD_LENGTH <= len(word) <= MAX_LEMMA_LENGTH:
                continue

            analysis = self.analyze(word)
            if analysis is None or analysis.is_function_word:
                continue
            if len(analysis.normal_form) > MAX_LEMMA_LENGTH:
                continue

            lemmas[analysis.normal_form] += 1

        return dict(lemmas)

    def collect_lemmas_from_html(self, html: str | None) -> Dict[str, int]:
        return self.collect_lemmas(extract_text(html))

    def matching_words(self, text: str | None, lemmas: Collection[str]) -> Set[str]:
        """Distinct lowercased words of ``text`` whose normal form is one of ``lemmas``."""
        wanted = set(lemmas)
        matches = set()
        for word in set(_WORD.findall((text or "").lower())):
            if not MIN_WORD_LENGTH <= len(word) <= MAX_LEMMA_LENGTH:
                continue
            analysis = self.analyze(word)
            if analysis is not None and analysis.normal_form in wanted:
                matches.add(word)
        return matches

    async def process_and_save_lemmas(self, html: str, site: Site, page: Page) -> Dict[str, int]:
        """(Re)index ``page``: its previous postings are replaced by the new lemma counts."""
        lemmas = self.collect_lemmas_from_html(html)

        await self.store.save_page_lemmas(site.id, page.id, lemmas)

        logger.debug(f"[{site.url}] Indexed {len(lemmas)} lemmas for {page.path}")
        return lemmas
