"""
Text helpers shared by the OCR detector and fusion.

Identifier extraction (ISBN, FCC ID, RN, CA, model numbers), keyword
hazard detection, registration-number extraction and capitalized-word
brand hints.
"""

import re
from typing import Dict, List, Optional

from clearout.engines.identify.schemas import Hazard
from clearout.engines.identify.taxonomy import normalize_brand

ID_PATTERNS = {
    "isbn": re.compile(r"\b(?:ISBN(?:-1[03])?:?\s*)?((?:97[89][ -]?)?[0-9][0-9 -]{8,}[0-9X])\b", re.IGNORECASE),
    "fcc": re.compile(r"\bFCC\s*ID\s*[:#]?\s*([A-Z0-9-]{5,})\b", re.IGNORECASE),
    "rn": re.compile(r"\bRN\s*[:#]?\s*(\d{5,})\b", re.IGNORECASE),
    "ca": re.compile(r"\bCA\s*[:#]?\s*(\d{5,})\b", re.IGNORECASE),
    "model": re.compile(r"\b(?:model|type|p/?n|m/?n|part|no\.)\s*[:#]?\s*([A-Z0-9-]{2,})\b", re.IGNORECASE),
}

# Checked in this order; one text can raise several hazards
HAZARD_PATTERNS = [
    (Hazard.BATTERY, re.compile(r"lithium|li-ion|nimh|battery", re.IGNORECASE)),
    (Hazard.AEROSOL, re.compile(r"aerosol|propane|butane|co2|pressur", re.IGNORECASE)),
    (Hazard.CHEMICAL, re.compile(r"flammable|corrosive|acid|alkali|chemical", re.IGNORECASE)),
    (Hazard.BLADE, re.compile(r"blade|knife|razor|cutter", re.IGNORECASE)),
    (Hazard.PRESSURIZED, re.compile(r"pressur|compressed", re.IGNORECASE)),
]

RN_PATTERN = re.compile(r"\bRN\s*[:#]?\s*(\d{5,})\b", re.IGNORECASE)
BRAND_HINT_PATTERN = re.compile(r"[A-Z][A-Za-z\-']{2,}")
MAX_BRAND_HINTS = 10


def _dedupe(items) -> List[str]:
    return list(dict.fromkeys(items))


def extract_ids(text: str) -> List[str]:
    """First captured identifier per pattern, deduplicated."""
    found = []
    for pattern in ID_PATTERNS.values():
        m = pattern.search(text)
        if m and m.group(1):
            found.append(m.group(1))
    return _dedupe(found)


def detect_hazards(text: str) -> List[str]:
    return [hazard.value for hazard, pattern in HAZARD_PATTERNS if pattern.search(text)]


def extract_rn(text: str) -> List[str]:
    """Every RN in `text` as `RN<digits>`, in order of appearance."""
    return _dedupe(f"RN{m.group(1)}" for m in RN_PATTERN.finditer(text))


def brand_hints(text: str, lexicon: Optional[Dict[str, str]] = None) -> List[str]:
    """Up to ten capitalized words, brand-normalized and deduplicated."""
    raw = BRAND_HINT_PATTERN.findall(text)[:MAX_BRAND_HINTS]
    normalized = (normalize_brand(word, lexicon) for word in raw)
    return _dedupe(b for b in normalized if b)
