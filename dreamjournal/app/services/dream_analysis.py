"""Dream analysis: themes, emotions, intensity and symbolism.

The primary path asks an OpenAI-compatible model for a JSON object. Any
failure on that path (no API key, transport or HTTP error, unparseable or
ill-shaped output) degrades to a deterministic keyword analysis, so adding a
dream never fails because the model is unavailable.
"""

import json
import re
from typing import Any, Dict, List, Optional

from fastapi import Request
from pydantic import BaseModel, Field, field_validator

from dreamjournal.app.core.http_client import get_http_client
from dreamjournal.app.core.logging import get_logger
from dreamjournal.app.providers import BaseProvider, OpenAICompatibleProvider
from dreamjournal.app.services.visualization import generate_visual

logger = get_logger(__name__)

DEFAULT_INTENSITY = 5
DEFAULT_THEME = "mysterious"
DEFAULT_EMOTION = "neutral"

THEME_KEYWORDS: Dict[str, List[str]] = {
    "flying": ["fly", "flying", "soar", "float", "hover", "glide"],
    "water": ["water", "ocean", "sea", "river", "lake", "swimming", "drowning", "rain"],
    "animals": ["dog", "cat", "bird", "snake", "lion", "tiger", "elephant", "horse", "fish"],
    "family": ["mother", "father", "mom", "dad", "sister", "brother", "family", "parents"],
    "school": ["school", "classroom", "teacher", "exam", "test", "homework", "student"],
    "work": ["work", "office", "boss", "job", "meeting", "colleague", "career"],
    "death": ["death", "die", "dead", "funeral", "grave", "ghost"],
    "chase": ["chase", "run", "escape", "pursue", "follow", "hunt"],
    "house": ["house", "home", "room", "door", "window", "building"],
    "car": ["car", "drive", "driving", "vehicle", "road", "crash"],
}

EMOTION_KEYWORDS: Dict[str, List[str]] = {
    "fear": ["scared", "afraid", "terrified", "frightened", "panic", "nightmare"],
    "happy": ["happy", "joy", "excited", "wonderful", "amazing", "beautiful"],
    "sad": ["sad", "cry", "crying", "depressed", "lonely", "empty"],
    "angry": ["angry", "mad", "furious", "rage", "hate", "annoyed"],
    "confused": ["confused", "lost", "weird", "strange", "bizarre", "unclear"],
    "peaceful": ["calm", "peaceful", "serene", "relaxed", "tranquil"],
    "anxious": ["worried", "anxious", "nervous", "stress", "overwhelming"],
}

THEME_SYMBOLISM: Dict[str, str] = {
    "flying": "desire for freedom or escape",
    "water": "emotions and subconscious mind",
    "animals": "instincts and natural behavior",
    "family": "relationships and personal connections",
    "school": "learning and personal growth",
    "work": "responsibilities and achievements",
    "death": "transformation and change",
    "chase": "avoidance or pursuit of goals",
    "house": "self and personal space",
    "car": "life direction and control",
    "mysterious": "unknown aspects of self",
}

def _compile_keywords(table: Dict[str, List[str]]) -> Dict[str, "re.Pattern[str]"]:
    # Whole words only, so "scared" does not match "car"
    return {
        label: re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b")
        for label, keywords in table.items()
    }


THEME_PATTERNS = _compile_keywords(THEME_KEYWORDS)
EMOTION_PATTERNS = _compile_keywords(EMOTION_KEYWORDS)

SYSTEM_PROMPT = (
    "You analyze dream descriptions. Respond with a single JSON object with "
    "exactly these fields: themes (array of strings, e.g. [\"flying\", \"water\"]), "
    "emotions (array of strings, e.g. [\"happy\", \"anxious\"]), intensity "
    "(integer 1-10, overall emotional intensity) and symbolism (array of "
    "strings, e.g. [\"water represents emotional state\"]). Do not wrap the "
    "object in any other object."
)


class DreamAnalysis(BaseModel):
    """Structured analysis as returned by the model.

    Missing or null lists become empty, a missing intensity becomes 5 and
    out-of-range intensities are clamped to 1-10.
    """
    themes: List[str] = Field(default_factory=list)
    emotions: List[str] = Field(default_factory=list)
    intensity: int = DEFAULT_INTENSITY
    symbolism: List[str] = Field(default_factory=list)

    @field_validator("themes", "emotions", "symbolism", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]

    @field_validator("intensity", mode="before")
    @classmethod
    def coerce_intensity(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return DEFAULT_INTENSITY
        return max(1, min(10, round(v)))


def keyword_analysis(description: str) -> DreamAnalysis:
    """Deterministic analysis from fixed keyword tables.

    Always yields at least one theme and one emotion.
    """
    text = description.lower()

    themes = [
        theme for theme, pattern in THEME_PATTERNS.items() if pattern.search(text)
    ] or [DEFAULT_THEME]
    emotions = [
        emotion for emotion, pattern in EMOTION_PATTERNS.items() if pattern.search(text)
    ] or [DEFAULT_EMOTION]

    return DreamAnalysis(
        themes=themes,
        emotions=emotions,
        intensity=DEFAULT_INTENSITY,
        symbolism=[THEME_SYMBOLISM.get(t, "personal significance") for t in themes],
    )


class DreamAnalyzer:
    """Analyze a dream with the model, falling back to keywords."""

    def __init__(self, provider: Optional[BaseProvider], model: str):
        self.provider = provider
        self.model = model

    def _build_payload(self, description: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Dream description: \"{description}\""},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.3,
        }

    async def _analyze_with_model(self, description: str) -> DreamAnalysis:
        response = await self.provider.chat_completion(self._build_payload(description))
        content = response["choices"][0]["message"]["content"]
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("Model returned a non-object analysis")
        return DreamAnalysis.model_validate(data)

    async def analyze(self, description: str) -> Dict[str, Any]:
        """Return ``{themes, emotions, intensity, symbolism, visual}``."""
        analysis = None
        if self.provider is not None:
            try:
                analysis = await self._analyze_with_model(description)
            except Exception as e:
                logger.warning(
                    f"AI analysis failed, falling back to keyword analysis: "
                    f"{type(e).__name__}: {e}"
                )

        if analysis is None:
            analysis = keyword_analysis(description)

        result = analysis.model_dump()
        result["visual"] = generate_visual(
            analysis.themes, analysis.emotions, analysis.intensity, description
        )
        return result


def get_dream_analyzer(request: Request) -> DreamAnalyzer:
    """FastAPI dependency building the analyzer over the shared HTTP client.

    Without an API key the analyzer runs keyword analysis only.
    """
    app_settings = request.app.state.settings
    provider = None
    if app_settings.ai_api_key:
        provider = OpenAICompatibleProvider(
            base_url=app_settings.ai_base_url,
            api_key=app_settings.ai_api_key,
            http_client=get_http_client(),
            timeout=app_settings.ai_timeout,
        )
    return DreamAnalyzer(provider=provider, model=app_settings.ai_model)
