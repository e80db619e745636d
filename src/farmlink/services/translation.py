"""Translation gateway client.

This module provides the client used to move chat text between the canonical
storage language and each participant's display language. It includes:

- A `Translator` interface the chat components depend on
- An httpx implementation against the public Google translate endpoint
- A circuit breaker so an unreachable service is not hammered per message

Translation never raises to callers: any transport or parse failure yields the
original text with no detected language.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from farmlink.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_OK = 200
TRANSLATE_PATH = "/translate_a/single"


@dataclass(frozen=True)
class TranslationResult:
    """Translated text plus the source language the service detected."""

    translated_text: str
    detected_language: str | None


class Translator(ABC):
    """Stateless text-in/text-out translation service."""

    @abstractmethod
    async def translate(self, text: str, target_language: str) -> TranslationResult:
        """Translate `text` into `target_language`, auto-detecting the source."""

    async def close(self) -> None:
        """Release any underlying resources."""


class CircuitState(Enum):
    """Circuit breaker states for the translation endpoint."""
    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Requests skipped, originals returned
    HALF_OPEN = "half_open"  # Probing whether the service is back


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding translation requests."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 1

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    @property
    def state(self) -> CircuitState:
        return self._state


@dataclass(frozen=True)
class TranslatorConfig:
    """Immutable configuration for the translation client."""

    base_url: str
    timeout_seconds: float
    failure_threshold: int
    recovery_seconds: float


def load_translator_config() -> TranslatorConfig:
    """Build configuration object from global settings."""

    return TranslatorConfig(
        base_url=settings.translate_base_url,
        timeout_seconds=float(settings.translate_timeout_seconds),
        failure_threshold=settings.translate_failure_threshold,
        recovery_seconds=float(settings.translate_recovery_seconds),
    )


def parse_translate_payload(payload: Any) -> TranslationResult | None:
    """Extract text and detected language from a `translate_a/single` response.

    The body is a nested list: element 0 holds `[translated, original, ...]`
    segments and element 2 the detected source language.
    """
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], list):
        return None

    pieces = [
        segment[0] if isinstance(segment, list) else segment
        for segment in payload[0]
    ]
    translated = "".join(piece for piece in pieces if isinstance(piece, str))
    detected = payload[2] if len(payload) > 2 and isinstance(payload[2], str) else None
    return TranslationResult(translated_text=translated, detected_language=detected)


class GoogleTranslateClient(Translator):
    """HTTP client wrapper for the Google translate endpoint."""

    def __init__(
        self,
        config: TranslatorConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_translator_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_seconds,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    @property
    def circuit_state(self) -> CircuitState:
        return self._circuit_breaker.state

    async def translate(self, text: str, target_language: str) -> TranslationResult:
        if not text:
            return TranslationResult(translated_text="", detected_language=None)
        if not target_language:
            return TranslationResult(translated_text=text, detected_language=None)
        if self._circuit_breaker.is_open():
            logger.debug("Translation circuit open; returning original text")
            return TranslationResult(translated_text=text, detected_language=None)

        client = await self._ensure_client()
        params = {"client": "gtx", "sl": "auto", "tl": target_language, "dt": "t", "q": text}

        try:
            response = await client.get(TRANSLATE_PATH, params=params)
            if response.status_code != HTTP_OK:
                raise ValueError(f"translate responded with {response.status_code}")
            result = parse_translate_payload(response.json())
            if result is None:
                raise ValueError("unexpected translate payload shape")
        except (httpx.HTTPError, ValueError) as exc:
            self._circuit_breaker.record_failure()
            logger.warning("Translation to %s failed: %s", target_language, exc)
            return TranslationResult(translated_text=text, detected_language=None)

        self._circuit_breaker.record_success()
        return result

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _TranslatorSingleton:
    """Singleton wrapper for the default translator."""

    _instance: Translator | None = None

    @classmethod
    def get_instance(cls) -> Translator:
        if cls._instance is None:
            cls._instance = GoogleTranslateClient()
        return cls._instance


def get_translator() -> Translator:
    """Return the process-wide translator instance."""
    return _TranslatorSingleton.get_instance()
