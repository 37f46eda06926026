"""
Response normalization for classification backends.

Backends return loosely-typed label/score data. This module turns that
into the strict internal schema:

1. extract_label_scores() accepts a flat sequence of {label, score} pairs or
   a sequence of such sequences (batch-shaped output) and flattens either.
   Any other shape yields no pairs.
2. categorize() folds raw labels into categories using ordered
   (substring, category) rules, keeping the maximum score per category.
3. overall_score() is the maximum category score, or 0.0 when empty.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from app.registry.models import Category, LabelRule


@dataclass(frozen=True)
class LabelScore:
    """One usable {label, score} pair from a backend."""

    label: str
    score: float


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _to_label_score(item: Any) -> LabelScore | None:
    """Return a LabelScore if `item` has a string label and a finite numeric score."""
    label = _field(item, "label")
    score = _field(item, "score")

    if not isinstance(label, str) or not label:
        return None
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    if math.isnan(score) or math.isinf(score):
        return None

    return LabelScore(label=label, score=min(1.0, max(0.0, float(score))))


def extract_label_scores(raw: Any) -> list[LabelScore]:
    """
    Extract usable label/score pairs from a raw backend response.

    Accepted shapes:
        [{"label": "toxic", "score": 0.91}, ...]
        [[{"label": "toxic", "score": 0.91}, ...], ...]

    Args:
        raw: Parsed backend response

    Returns:
        Usable pairs in backend order (possibly empty)
    """
    if not _is_sequence(raw) or len(raw) == 0:
        return []

    if all(_is_sequence(entry) for entry in raw):
        items = [item for entry in raw for item in entry]
    elif any(_is_sequence(entry) for entry in raw):
        # Mixed nesting is not a shape any backend produces.
        return []
    else:
        items = list(raw)

    pairs = []
    for item in items:
        pair = _to_label_score(item)
        if pair is not None:
            pairs.append(pair)
    return pairs


def match_category(label: str, rules: list[LabelRule]) -> str | None:
    """Return the category of the first rule whose substring occurs in `label`."""
    lowered = label.lower()
    for rule in rules:
        if rule.substring in lowered:
            return rule.category
    return None


def categorize(pairs: list[LabelScore], rules: list[LabelRule]) -> dict[str, float]:
    """
    Fold label/score pairs into category scores.

    Labels matching no rule are dropped. Where several labels map to the same
    category the highest score is kept. If nothing matched but some label
    contains "tox", toxicity is taken from that pair, so binary
    toxic/non-toxic classifiers still populate a category.
    """
    categories: dict[str, float] = {}

    for pair in pairs:
        category = match_category(pair.label, rules)
        if category is None:
            continue
        existing = categories.get(category)
        if existing is None or pair.score > existing:
            categories[category] = pair.score

    if not categories and pairs:
        toxic_like = next((p for p in pairs if "tox" in p.label.lower()), None)
        if toxic_like is not None:
            categories[Category.TOXICITY.value] = toxic_like.score

    return categories


def overall_score(categories: dict[str, float]) -> float:
    """Maximum populated category score; 0.0 when no category is populated."""
    if not categories:
        return 0.0
    return max(categories.values())
