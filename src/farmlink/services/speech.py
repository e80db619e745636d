"""Speech capture and playback capabilities.

Recognizers and text-to-speech engines are platform specific. The chat session
only depends on the interfaces below; the concrete engine is chosen once at
startup and injected.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from farmlink.core.settings import settings

logger = logging.getLogger(__name__)


class SpeechUnavailableError(RuntimeError):
    """Raised when a recognizer cannot start on this device."""


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class InterimResult:
    text: str


@dataclass(frozen=True)
class FinalResult:
    text: str


@dataclass(frozen=True)
class SpeechErrored:
    code: str


@dataclass(frozen=True)
class SpeechEnded:
    pass


SpeechEvent = SpeechStarted | InterimResult | FinalResult | SpeechErrored | SpeechEnded
SpeechListener = Callable[[SpeechEvent], None]


class SpeechRecognizer(ABC):
    """Streaming speech-to-text engine."""

    @property
    def supported(self) -> bool:
        return True

    @abstractmethod
    async def start(self, language_tag: str, listener: SpeechListener) -> None:
        """Begin a recognition session delivering events to `listener`.

        Raises:
            SpeechUnavailableError: If the engine cannot start.
        """

    @abstractmethod
    async def stop(self) -> None:
        """End the current session. Safe to call when idle."""


class UnavailableRecognizer(SpeechRecognizer):
    """Recognizer for devices without speech input."""

    @property
    def supported(self) -> bool:
        return False

    async def start(self, language_tag: str, listener: SpeechListener) -> None:
        raise SpeechUnavailableError("Speech recognition is not available on this device")

    async def stop(self) -> None:
        return None


class TextToSpeech(ABC):
    """Fire-and-forget speech playback."""

    @abstractmethod
    def speak(self, text: str, language_tag: str) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...


class SilentTextToSpeech(TextToSpeech):
    """Playback engine that says nothing."""

    def speak(self, text: str, language_tag: str) -> None:
        logger.debug("Skipping playback of %d chars (%s)", len(text), language_tag)

    def stop(self) -> None:
        return None


class TranscriptBuffer:
    """Composer text assembled from finalized and interim recognition segments."""

    def __init__(self) -> None:
        self._finals: list[str] = []
        self._interim = ""

    def begin(self) -> None:
        """Reset for a new recognition session."""
        self._finals = []
        self._interim = ""

    def apply_final(self, text: str) -> bool:
        """Append a finalized segment unless it is empty or repeats the previous one."""
        segment = text.strip()
        if not segment or (self._finals and self._finals[-1] == segment):
            return False
        self._finals.append(segment)
        # The engine stops revising once it finalizes, so any interim is now stale.
        self._interim = ""
        return True

    def apply_interim(self, text: str) -> None:
        self._interim = text.strip()

    @property
    def finalized(self) -> str:
        return " ".join(self._finals)

    @property
    def composer_text(self) -> str:
        return f"{self.finalized} {self._interim}".strip()

    def settle(self) -> str:
        """Drop the interim segment and return the finalized text."""
        self._interim = ""
        return self.finalized

    def clear(self) -> None:
        self.begin()


class SilenceWatchdog:
    """Fires a callback after a period without recognition activity."""

    def __init__(
        self,
        on_timeout: Callable[[], Awaitable[None] | None],
        *,
        timeout: float | None = None,
    ) -> None:
        self._on_timeout = on_timeout
        self.timeout = timeout if timeout is not None else settings.silence_timeout_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        """(Re)start the countdown."""
        self.cancel()
        self._task = asyncio.create_task(self._countdown())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _countdown(self) -> None:
        await asyncio.sleep(self.timeout)
        self._task = None
        logger.debug("No speech for %.1fs; stopping recognition", self.timeout)
        result = self._on_timeout()
        if asyncio.iscoroutine(result):
            await result

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
