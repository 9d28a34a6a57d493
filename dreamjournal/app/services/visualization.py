"""Deterministic visual rendering of a dream analysis.

The picture is a background color, a handful of shapes and a cloud of
particles. All randomness comes from a ``random.Random`` seeded with the
SHA-256 of the dream text, so the same dream always renders the same way.
"""

import hashlib
import random
from typing import Any, Dict, List, Sequence

EMOTION_COLORS: Dict[str, List[str]] = {
    "fear": ["#1a202c", "#2d3748", "#4a5568"],
    "happy": ["#f6e05e", "#ed8936", "#dd6b20"],
    "sad": ["#2b6cb0", "#3182ce", "#4299e1"],
    "angry": ["#9b2c2c", "#c53030", "#e53e3e"],
    "confused": ["#553c9a", "#6b46c1", "#805ad5"],
    "peaceful": ["#2c7a7b", "#319795", "#38b2ac"],
    "anxious": ["#c05621", "#dd6b20", "#ed8936"],
    "excited": ["#d69e2e", "#f6e05e", "#faf089"],
    "neutral": ["#4a5568", "#718096", "#a0aec0"],
    "mysterious": ["#553c9a", "#6b46c1", "#805ad5"],
}

THEME_SHAPES: Dict[str, str] = {
    "flying": "circle",
    "water": "circle",
    "animals": "circle",
    "nature": "circle",
    "food": "circle",
    "family": "square",
    "school": "square",
    "work": "square",
    "house": "square",
    "car": "square",
    "money": "square",
    "death": "triangle",
    "chase": "triangle",
    "fear": "triangle",
    "mysterious": "triangle",
}

MIN_SHAPES = 3
MAX_SHAPES = 12


def _palette(emotion: str) -> List[str]:
    return EMOTION_COLORS.get(emotion, EMOTION_COLORS["neutral"])


def _rng_for(text: str) -> random.Random:
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    return random.Random(seed)


def generate_visual(
    themes: Sequence[str],
    emotions: Sequence[str],
    intensity: int,
    text: str,
) -> Dict[str, Any]:
    """Render ``{backgroundColor, shapes, particles, intensity}``.

    The dominant (first) emotion picks the palette; themes pick shape types;
    intensity scales shape size, opacity and particle count.
    """
    rng = _rng_for(text)

    palette = _palette(emotions[0] if emotions else "neutral")
    intensity_multiplier = max(0.1, min(1.0, intensity / 10))

    shape_count = min(
        MAX_SHAPES,
        max(MIN_SHAPES, len(themes) + len(emotions) + intensity // 2),
    )
    base_size = 20 + intensity * 4

    shapes = []
    for i in range(shape_count):
        emotion = emotions[i % len(emotions)] if emotions else "neutral"
        theme = themes[i % len(themes)] if themes else "mysterious"
        shapes.append({
            "type": THEME_SHAPES.get(theme, "circle"),
            "size": base_size + rng.random() * 40,
            "x": rng.random() * 80,
            "y": rng.random() * 80,
            "color": rng.choice(_palette(emotion)),
            "opacity": 0.2 + intensity_multiplier * 0.6,
            "rotation": rng.random() * 360,
        })

    particle_count = int(10 + intensity * 2 + rng.random() * 10)
    particles = [
        {
            "x": rng.random() * 100,
            "y": rng.random() * 100,
            "color": rng.choice(palette),
            "size": 2 + rng.random() * 4,
        }
        for _ in range(particle_count)
    ]

    return {
        "backgroundColor": palette[0],
        "shapes": shapes,
        "particles": particles,
        "intensity": intensity,
    }
