"""Per-script morphological analyzers.

Each analyzer turns a lowercase word into an :class:`Analysis` (the first
normal form plus the grammatical categories the word can take) or ``None``
when the word cannot be analyzed by that script's dictionary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

import pymorphy3
from nltk.stem.snowball import SnowballStemmer

CONJUNCTION = "CONJ"
PREPOSITION = "PREP"
INTERJECTION = "INTJ"
PARTICLE = "PRCL"
ARTICLE = "ARTICLE"
PRONOUN = "PRON"
INTERROGATIVE = "QUES"

FUNCTION_WORD_CATEGORIES = frozenset(
    {CONJUNCTION, PREPOSITION, INTERJECTION, PARTICLE, ARTICLE, PRONOUN, INTERROGATIVE}
)

_CYRILLIC = re.compile(r"[Ѐ-ӿ]")
_ENGLISH_WORD = re.compile(r"^[a-z]+$")


@dataclass(frozen=True)
class Analysis:
    normal_form: str
    categories: FrozenSet[str]

    @property
    def is_function_word(self) -> bool:
        return bool(self.categories & FUNCTION_WORD_CATEGORIES)


def is_cyrillic(word: str) -> bool:
    return _CYRILLIC.search(word) is not None


class RussianAnalyzer:
    """OpenCorpora dictionary lookups through pymorphy3."""

    # pymorphy3 POS tags / grammemes -> our categories
    _POS_CATEGORIES = {
        "CONJ": CONJUNCTION,
        "PREP": PREPOSITION,
        "INTJ": INTERJECTION,
        "PRCL": PARTICLE,
        "NPRO": PRONOUN,
    }
    _UNANALYZABLE = ("LATN", "UNKN", "NUMB", "ROMN", "PNCT")

    def __init__(self, morph: Optional[pymorphy3.MorphAnalyzer] = None):
        self.morph = morph or pymorphy3.MorphAnalyzer(lang="ru")

    def analyze(self, word: str) -> Optional[Analysis]:
        parses = [
            p for p in self.morph.parse(word)
            if not any(grammeme in p.tag for grammeme in self._UNANALYZABLE)
        ]
        if not parses:
            return None

        # Any homonym reading counts: "и" is a conjunction even though it
        # also parses as an interjection or a noun.
        categories = set()
        for parse in parses:
            if parse.tag.POS in self._POS_CATEGORIES:
                categories.add(self._POS_CATEGORIES[parse.tag.POS])
            if "Apro" in parse.tag:
                categories.add(PRONOUN)
            if "Ques" in parse.tag:
                categories.add(INTERROGATIVE)

        return Analysis(normal_form=parses[0].normal_form.lower(), categories=frozenset(categories))


_ENGLISH_FUNCTION_WORDS: Dict[str, str] = {}
for _category, _words in (
    (ARTICLE, "a an the"),
    (
        CONJUNCTION,
        "and or but nor so yet because although though while whereas unless if than "
        "whether either neither both as once until till lest",
    ),
    (
        PREPOSITION,
        "about above across after against along amid among around at before behind below "
        "beneath beside besides between beyond by despite down during except for from in "
        "inside into near of off on onto out outside over past per since through throughout "
        "to toward towards under underneath unlike up upon via with within without",
    ),
    (
        PRONOUN,
        "i me my mine myself you your yours yourself yourselves he him his himself she her "
        "hers herself it its itself we us our ours ourselves they them their theirs themselves "
        "this that these those someone somebody something anyone anybody anything everyone "
        "everybody everything nobody nothing none oneself",
    ),
    (INTERROGATIVE, "what which who whom whose when where why how"),
    (
        INTERJECTION,
        "oh ah aha wow hey hello hi oops ouch alas hmm uh um er yeah hurray hooray bravo",
    ),
    (PARTICLE, "not no yes"),
):
    for _word in _words.split():
        _ENGLISH_FUNCTION_WORDS.setdefault(_word, _category)


class EnglishAnalyzer:
    """Closed-class lexicon for categories, nltk's Snowball stemmer for normal forms."""

    def __init__(self):
        self.stemmer = SnowballStemmer("english")

    def analyze(self, word: str) -> Optional[Analysis]:
        if not _ENGLISH_WORD.match(word):
            return None

        category = _ENGLISH_FUNCTION_WORDS.get(word)
        if category is not None:
            return Analysis(normal_form=word, categories=frozenset({category}))

        return Analysis(normal_form=self.stemmer.stem(word), categories=frozenset())
