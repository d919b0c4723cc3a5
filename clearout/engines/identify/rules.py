"""
Rule Classifier

Keyword rules are (pattern, category, optional brand) triples evaluated
in file order against OCR text. The rule with the most matches wins and
its matches are kept as explainable signals.
"""

import json
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

from clearout.core.logging import get_logger
from clearout.engines.identify.repositories import CompiledRule, get_reference_repository
from clearout.engines.identify.schemas import RuleGuess

logger = get_logger(__name__)

MODEL_TOKEN_PATTERN = re.compile(r"\bA\d{4}\b", re.IGNORECASE)


def classify_from_text(
    text: str,
    allowed: Optional[Sequence[str]] = None,
    rules: Optional[List[CompiledRule]] = None,
) -> RuleGuess:
    """
    Pick the best keyword rule for `text`.

    Args:
        text: OCR text (lines joined)
        allowed: If non-empty, rules outside these categories are skipped
        rules: Compiled rules; defaults to the reference repository's

    Returns:
        RuleGuess with the winner's category/brand, a model token
        (`A` + 4 digits) if the text has one, and the matched substrings.
        Ties go to the earlier rule. No match gives an empty guess.
    """
    if rules is None:
        rules = get_reference_repository().rules()
    allowed_set = set(allowed or ())

    best = RuleGuess()
    for rule in rules:
        if allowed_set and rule.category not in allowed_set:
            continue
        signals = [m.group(0) for m in rule.regex.finditer(text or "") if m.group(0)]
        if len(signals) > len(best.signals):
            model_match = MODEL_TOKEN_PATTERN.search(text)
            best = RuleGuess(
                category=rule.category,
                brand=rule.brand or None,
                model=model_match.group(0) if model_match else None,
                signals=tuple(signals),
            )
    return best


def load_allowed_categories(manifest_path: Union[str, Path]) -> List[str]:
    """Categories named in a user manifest, in first-seen order.

    Reads `items[].category` and `items[].ground_truth.category`. A missing
    or unreadable manifest gives an empty list.
    """
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
        categories = []
        for item in manifest.get("items") or []:
            if item.get("category"):
                categories.append(item["category"])
            truth = item.get("ground_truth") or {}
            if truth.get("category"):
                categories.append(truth["category"])
    except (OSError, ValueError, AttributeError, TypeError) as e:
        logger.warning("user_manifest_unreadable", path=str(manifest_path), error=str(e))
        return []
    return list(dict.fromkeys(categories))
