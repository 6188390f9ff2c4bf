from .site_model import Site, SiteStatus
from .page_model import Page
from .lemma_model import MAX_LEMMA_LENGTH, Lemma
from .posting_model import Posting

__all__ = [
    "Site",
    "SiteStatus",
    "Page",
    "Lemma",
    "MAX_LEMMA_LENGTH",
    "Posting",
]
