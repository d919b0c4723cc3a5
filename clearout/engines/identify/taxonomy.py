"""
Taxonomy & Brand Normalizer

Maps free-text category hints onto the canonical category ids and brand
spellings onto their display names. Both read their tables from the
reference repository unless a table is passed in.
"""

import re
from typing import Dict, List, Optional

from clearout.engines.identify.repositories import TaxonomyEntry, get_reference_repository

MISC_CATEGORY = "misc"


def canonical_category(hint: Optional[str], taxonomy: Optional[List[TaxonomyEntry]] = None) -> str:
    """Canonical category id for `hint`, or `misc`.

    An entry matches when its id equals the lower-cased hint or any of its
    synonyms occurs in it. Entries are tried in taxonomy order.
    """
    if not hint:
        return MISC_CATEGORY
    if taxonomy is None:
        taxonomy = get_reference_repository().taxonomy()

    text = hint.lower()
    for entry in taxonomy:
        if entry.id.lower() == text:
            return entry.id
        if any(syn and syn.lower() in text for syn in entry.synonyms):
            return entry.id
    return MISC_CATEGORY


def brand_key(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def normalize_brand(text: Optional[str], lexicon: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Display name for a brand spelling.

    Exact lexicon hit first, then the first lexicon key that prefixes the
    normalized text. Unknown brands come back unchanged; empty input is None.
    """
    if not text:
        return None
    if lexicon is None:
        lexicon = get_reference_repository().brand_lexicon()

    key = brand_key(text)
    if not key:
        return text
    if key in lexicon:
        return lexicon[key]
    for candidate, display in lexicon.items():
        if candidate and key.startswith(candidate):
            return display
    return text
