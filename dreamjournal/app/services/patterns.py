"""Aggregate theme and emotion statistics over a user's dreams."""

from collections import Counter
from typing import Any, Dict, Iterable, List, Tuple


def _field(dream: Any, name: str) -> List[str]:
    value = dream.get(name) if isinstance(dream, dict) else getattr(dream, name, None)
    return list(value or [])


def calculate_patterns(dreams: Iterable[Any]) -> Dict[str, Dict[str, int]]:
    """Count theme and emotion occurrences.

    Accepts ORM rows or plain dicts. Returns
    ``{"themes": {name: count}, "emotions": {name: count}}``.
    """
    themes: Counter = Counter()
    emotions: Counter = Counter()
    for dream in dreams:
        themes.update(_field(dream, "themes"))
        emotions.update(_field(dream, "emotions"))
    return {"themes": dict(themes), "emotions": dict(emotions)}


def most_frequent(
    patterns: Dict[str, Dict[str, int]],
    n: int = 3,
) -> Dict[str, List[Tuple[str, int]]]:
    """Top ``n`` themes and emotions, highest count first."""
    return {
        kind: Counter(patterns.get(kind, {})).most_common(n)
        for kind in ("themes", "emotions")
    }
