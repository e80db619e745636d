"""Negotiation chat session.

A `ChatSession` owns the state of one open conversation view: the translated
message list, the composer, the recording and mute flags, and user notices.

Everything that arrives asynchronously (pushed message rows, speech engine
events, the silence watchdog, display-language changes) is posted onto one
ordered queue and applied by a single consumer task, so the state is only ever
mutated in the order events were received.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from farmlink.core.context import AppContext
from farmlink.core.languages import is_supported, speech_tag
from farmlink.gateway.base import DataGateway, DuplicateKeyError, GatewayError, Subscription
from farmlink.schemas.records import ConversationRecord, MessageRecord
from farmlink.services.conversations import (
    ConversationResolutionError,
    ConversationResolver,
    load_translated_messages,
    message_preview,
    to_canonical,
    translate_for_viewer,
)
from farmlink.services.offline_queue import OfflineQueue
from farmlink.services.speech import (
    FinalResult,
    InterimResult,
    SilenceWatchdog,
    SilentTextToSpeech,
    SpeechEnded,
    SpeechErrored,
    SpeechEvent,
    SpeechRecognizer,
    SpeechStarted,
    SpeechUnavailableError,
    TextToSpeech,
    TranscriptBuffer,
    UnavailableRecognizer,
)
from farmlink.services.translation import Translator

logger = logging.getLogger(__name__)

PermissionRequest = Callable[[], Awaitable[bool]]


class SendOutcome(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    EMPTY = "empty"


class Notice(str, Enum):
    """Transient, non-fatal messages for the user."""

    QUEUED = "queued"
    MICROPHONE_DENIED = "microphone_denied"
    SPEECH_UNAVAILABLE = "speech_unavailable"


@dataclass(frozen=True)
class ChatViewError:
    """Whole-view failure shown in place of the message list."""

    message: str
    retryable: bool = True


class ChatSessionClosedError(RuntimeError):
    """Raised when an operation needs an open conversation and there is none."""


@dataclass(frozen=True)
class _MessagePushed:
    row: dict[str, Any]


@dataclass(frozen=True)
class _SpeechUpdate:
    event: SpeechEvent


@dataclass(frozen=True)
class _SilenceElapsed:
    pass


@dataclass(frozen=True)
class _LanguageChanged:
    language: str


_ChatEvent = _MessagePushed | _SpeechUpdate | _SilenceElapsed | _LanguageChanged


def _newest_first(message: MessageRecord) -> tuple[Any, int]:
    return (message.created_at, message.id)


class ChatSession:
    """State machine behind a single conversation view."""

    def __init__(
        self,
        context: AppContext,
        gateway: DataGateway,
        translator: Translator,
        offline_queue: OfflineQueue,
        *,
        resolver: ConversationResolver | None = None,
        recognizer: SpeechRecognizer | None = None,
        speaker: TextToSpeech | None = None,
        request_microphone: PermissionRequest | None = None,
        silence_timeout: float | None = None,
        remote_timeout: float | None = None,
    ) -> None:
        self.context = context
        self._gateway = gateway
        self._translator = translator
        self._queue = offline_queue
        self._resolver = resolver or ConversationResolver(gateway)
        self._recognizer = recognizer or UnavailableRecognizer()
        self._speaker = speaker or SilentTextToSpeech()
        self._request_microphone = request_microphone
        self.remote_timeout = (
            remote_timeout if remote_timeout is not None else context.settings.remote_timeout_seconds
        )
        self._watchdog = SilenceWatchdog(
            self._on_silence,
            timeout=silence_timeout if silence_timeout is not None else context.settings.silence_timeout_seconds,
        )
        self._buffer = TranscriptBuffer()

        self.conversation: ConversationRecord | None = None
        self.messages: list[MessageRecord] = []
        self.composer_text = ""
        self.recording = False
        self.muted = False
        self.voice_ready = self._recognizer.supported
        self.notices: list[Notice] = []
        self.error: ChatViewError | None = None

        self._key: tuple[int, str, str] | None = None
        self._seen: set[int] = set()
        self._events: asyncio.Queue[_ChatEvent] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._subscription: Subscription | None = None
        self._unsubscribe_language: Callable[[], None] | None = None
        self._speech_error_reported = False
        self._flushing = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # --- lifecycle --------------------------------------------------------------
    async def open(self, product_id: int, producer_id: str, buyer_id: str) -> bool:
        """Resolve the conversation, load its messages and start listening.

        Returns:
            False when the view is in an error state; see `error` and `retry()`.
        """
        if self._closed:
            raise ChatSessionClosedError("Chat session was closed")
        self._key = (product_id, producer_id, buyer_id)
        self._ensure_consumer()
        if self._unsubscribe_language is None:
            self._unsubscribe_language = self.context.on_language_change(
                lambda language: self.post(_LanguageChanged(language))
            )
        return await self._load()

    async def retry(self) -> bool:
        """Re-run the open sequence after a view error."""
        if self._key is None:
            raise ChatSessionClosedError("Chat session was never opened")
        return await self.open(*self._key)

    async def _load(self) -> bool:
        self.error = None
        try:
            conversation = await self._resolver.resolve(*self._key)
        except ConversationResolutionError as exc:
            logger.warning("Chat view could not resolve conversation: %s", exc)
            self.error = ChatViewError("Could not open this conversation.")
            return False

        if self._closed:
            return False
        self.conversation = conversation
        if self._subscription is None:
            self._subscription = self._gateway.subscribe(
                "messages",
                column="conversation_id",
                value=conversation.id,
                callback=lambda row: self.post(_MessagePushed(row)),
            )

        try:
            messages = await load_translated_messages(
                self._gateway,
                self._translator,
                conversation.id,
                self.context.language,
                self.context.canonical_language,
            )
        except GatewayError as exc:
            logger.warning("Loading messages for conversation %s failed: %s", conversation.id, exc)
            self.error = ChatViewError("Could not load messages.")
            return False

        if self._closed:
            return False
        self._replace_messages(messages)
        await self.flush_offline_queue()
        return True

    async def close(self) -> None:
        """Tear the view down; no event is applied after this returns."""
        if self._closed:
            return
        self._closed = True

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._unsubscribe_language is not None:
            self._unsubscribe_language()
            self._unsubscribe_language = None

        await self._watchdog.aclose()
        if self.recording:
            self.recording = False
            await self._stop_engine()
        self._speaker.stop()

        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

    # --- event queue ------------------------------------------------------------
    def post(self, event: _ChatEvent) -> None:
        """Queue an event for the consumer. Dropped once the session is closed."""
        if self._closed:
            return
        self._events.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await asyncio.sleep(0)
        if self._consumer is not None:
            await self._events.join()

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            event = await self._events.get()
            try:
                if not self._closed:
                    await self._apply(event)
            except GatewayError as e:
                logger.warning("Chat event %s could not be applied: %s", type(event).__name__, e)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Chat event %s carried bad data: %s", type(event).__name__, e, exc_info=True)
            finally:
                self._events.task_done()

    async def _apply(self, event: _ChatEvent) -> None:
        if isinstance(event, _MessagePushed):
            await self._apply_pushed(event.row)
        elif isinstance(event, _SpeechUpdate):
            await self._apply_speech(event.event)
        elif isinstance(event, _SilenceElapsed):
            await self.stop_recording()
        elif isinstance(event, _LanguageChanged):
            await self._reload_messages()

    # --- messages ---------------------------------------------------------------
    async def _apply_pushed(self, row: dict[str, Any]) -> None:
        record = MessageRecord.model_validate(row)
        if self.conversation is None or record.conversation_id != self.conversation.id:
            return
        if record.id in self._seen:
            return

        shown = await translate_for_viewer(
            self._translator, record, self.context.language, self.context.canonical_language
        )
        if self._closed or not self._merge(shown):
            return
        if shown.sender_id != self.context.user_id:
            self.speak(shown.content)

    async def _reload_messages(self) -> None:
        if self.conversation is None:
            return
        messages = await load_translated_messages(
            self._gateway,
            self._translator,
            self.conversation.id,
            self.context.language,
            self.context.canonical_language,
        )
        if not self._closed:
            self.messages = []
            self._seen = set()
            self._replace_messages(messages)

    def _show_own(self, message: MessageRecord) -> None:
        # Replaces a pushed copy of the same row if one was applied first.
        self._seen.add(message.id)
        self.messages = [shown for shown in self.messages if shown.id != message.id]
        self.messages.append(message)
        self.messages.sort(key=_newest_first, reverse=True)

    def _merge(self, message: MessageRecord) -> bool:
        if message.id in self._seen:
            return False
        self._seen.add(message.id)
        self.messages.append(message)
        self.messages.sort(key=_newest_first, reverse=True)
        return True

    def _replace_messages(self, fetched: list[MessageRecord]) -> None:
        # Pushes applied while the fetch was in flight are kept.
        by_id = {message.id: message for message in self.messages}
        by_id.update({message.id: message for message in fetched})
        self.messages = sorted(by_id.values(), key=_newest_first, reverse=True)
        self._seen = set(by_id)

    # --- composer and send ------------------------------------------------------
    def set_composer_text(self, text: str) -> None:
        self.composer_text = text

    async def send(self, text: str | None = None) -> SendOutcome:
        """Translate the composer text to the canonical language and persist it.

        A message is either confirmed by the store or kept in the offline
        queue; it is never dropped.
        """
        raw = (text if text is not None else self.composer_text).strip()
        if not raw:
            return SendOutcome.EMPTY
        conversation = self._require_conversation()

        result = await to_canonical(self._translator, raw, self.context.canonical_language)
        self._learn_language(result.detected_language)
        content = result.translated_text or raw
        client_ref = uuid.uuid4().hex

        try:
            record = await asyncio.wait_for(
                self._gateway.insert_message(
                    conversation.id, self.context.user_id, content, client_ref=client_ref
                ),
                timeout=self.remote_timeout,
            )
        except (GatewayError, TimeoutError) as exc:
            logger.warning("Sending to conversation %s failed, queueing: %s", conversation.id, exc)
            self._queue.enqueue(conversation.id, self.context.user_id, content, client_ref)
            self._notify(Notice.QUEUED)
            await self.flush_offline_queue()
            return SendOutcome.QUEUED

        self.composer_text = ""
        self._buffer.clear()
        # The sender sees their own words rather than a round-trip translation.
        self._show_own(record.model_copy(update={"content": raw}))
        await self._update_preview(record)
        await self.flush_offline_queue()
        return SendOutcome.SENT

    async def flush_offline_queue(self) -> int:
        """Retry queued messages oldest first, stopping at the first failure.

        Each entry is removed as soon as its own insert is confirmed.

        Returns:
            Number of entries that left the queue.
        """
        if self._flushing:
            return 0
        self._flushing = True
        delivered = 0
        try:
            for entry in self._queue.entries():
                try:
                    record = await asyncio.wait_for(
                        self._gateway.insert_message(
                            entry.conversation_id,
                            entry.sender_id,
                            entry.content,
                            client_ref=entry.client_ref,
                        ),
                        timeout=self.remote_timeout,
                    )
                except DuplicateKeyError:
                    logger.info("Queued message %s was already delivered", entry.client_ref)
                    self._queue.remove(entry.id)
                    delivered += 1
                    continue
                except (GatewayError, TimeoutError) as exc:
                    logger.warning("Offline flush stopped with %d left: %s", len(self._queue), exc)
                    break

                self._queue.remove(entry.id)
                delivered += 1
                await self._update_preview(record)
        finally:
            self._flushing = False

        if delivered:
            logger.info("Flushed %d queued messages", delivered)
        return delivered

    async def _update_preview(self, record: MessageRecord) -> None:
        try:
            await self._gateway.update_conversation_preview(
                record.conversation_id,
                preview=message_preview(record.content, self.context.settings.message_preview_length),
                at=record.created_at,
                sender_id=record.sender_id,
            )
        except GatewayError as exc:
            logger.warning("Updating preview of conversation %s failed: %s", record.conversation_id, exc)

    def _learn_language(self, detected: str | None) -> None:
        if detected and detected != self.context.language and is_supported(detected):
            self.context.set_language(detected)

    def _require_conversation(self) -> ConversationRecord:
        if self._closed:
            raise ChatSessionClosedError("Chat session was closed")
        if self.conversation is None:
            raise ChatSessionClosedError("No conversation is open")
        return self.conversation

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)

    # --- speech -----------------------------------------------------------------
    async def start_recording(self) -> bool:
        """Begin voice input into the composer.

        Returns:
            True if the recognizer is now listening.
        """
        if self._closed or self.recording:
            return self.recording
        if not self.voice_ready:
            self._speech_unavailable("recognizer not available")
            return False
        if self._request_microphone is not None and not await self._request_microphone():
            self._notify(Notice.MICROPHONE_DENIED)
            return False

        self._ensure_consumer()
        self._buffer.begin()
        try:
            await self._recognizer.start(
                speech_tag(self.context.language),
                lambda event: self.post(_SpeechUpdate(event)),
            )
        except SpeechUnavailableError as exc:
            self._speech_unavailable(str(exc))
            return False

        self.recording = True
        self._watchdog.reset()
        return True

    async def stop_recording(self) -> None:
        """End voice input; finalized text stays in the composer."""
        self._watchdog.cancel()
        if not self.recording:
            return
        self.recording = False
        await self._stop_engine()
        self.composer_text = self._buffer.settle()

    async def _stop_engine(self) -> None:
        try:
            await self._recognizer.stop()
        except SpeechUnavailableError as exc:
            logger.warning("Recognizer did not stop cleanly: %s", exc)

    async def _apply_speech(self, event: SpeechEvent) -> None:
        if isinstance(event, SpeechStarted):
            return
        if isinstance(event, SpeechErrored):
            self._watchdog.cancel()
            if self.recording:
                self.recording = False
                await self._stop_engine()
            self._speech_unavailable(event.code)
            return
        if isinstance(event, SpeechEnded):
            self._watchdog.cancel()
            if self.recording:
                self.recording = False
                self.composer_text = self._buffer.settle()
            return
        if not self.recording:
            return

        if isinstance(event, FinalResult):
            self._buffer.apply_final(event.text)
        elif isinstance(event, InterimResult):
            self._buffer.apply_interim(event.text)
        self.composer_text = self._buffer.composer_text
        self._watchdog.reset()

    def _on_silence(self) -> None:
        self.post(_SilenceElapsed())

    def _speech_unavailable(self, reason: str) -> None:
        self.recording = False
        self.voice_ready = False
        if not self._speech_error_reported:
            self._speech_error_reported = True
            logger.warning("Voice input disabled: %s", reason)
            self._notify(Notice.SPEECH_UNAVAILABLE)

    # --- playback ---------------------------------------------------------------
    def speak(self, text: str) -> bool:
        """Read text aloud unless muted. Returns True if playback was requested."""
        if self.muted or not text:
            return False
        self._speaker.stop()
        self._speaker.speak(text, speech_tag(self.context.language))
        return True

    def toggle_mute(self) -> bool:
        """Flip the mute flag; muting stops any playback in progress."""
        self.muted = not self.muted
        if self.muted:
            self._speaker.stop()
        return self.muted
