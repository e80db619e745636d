"""Languages supported by the marketplace chat."""

from __future__ import annotations

from typing import Final

SUPPORTED_LANGUAGES: Final[dict[str, str]] = {
    "en": "English",
    "hi": "Hindi",
    "kn": "Kannada",
    "te": "Telugu",
    "ta": "Tamil",
}

_SPEECH_TAGS: Final[dict[str, str]] = {
    "hi": "hi-IN",
    "kn": "kn-IN",
    "te": "te-IN",
    "ta": "ta-IN",
}


def is_supported(language: str | None) -> bool:
    """Return True if the language code is one the chat can display."""
    return bool(language) and language in SUPPORTED_LANGUAGES


def speech_tag(language: str | None) -> str:
    """Return the speech engine locale tag for a language code."""
    if language is None:
        return "en-US"
    return _SPEECH_TAGS.get(language, "en-US")
