"""Conversation identity and read projections.

Conversations are keyed by ``(product_id, producer_id, buyer_id)``. The store's
unique constraint on that triple is the authority; the resolver adds an
in-process single-flight guard so concurrent callers share one lookup and a
duplicate-key failure from a racing writer is resolved by re-reading.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from farmlink.core.settings import settings
from farmlink.db.time import utcnow
from farmlink.gateway.base import DataGateway, DuplicateKeyError, GatewayError
from farmlink.schemas.records import ConversationRecord, ConversationSummary, MessageRecord
from farmlink.services.translation import TranslationResult, Translator

logger = logging.getLogger(__name__)

ConversationKey = tuple[int, str, str]


class ConversationResolutionError(RuntimeError):
    """Raised when a conversation can be neither found nor created."""


def message_preview(content: str, limit: int | None = None) -> str:
    """Shorten message content for the conversation list."""
    limit = limit if limit is not None else settings.message_preview_length
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


class ConversationResolver:
    """Find-or-create conversations and list them per user."""

    def __init__(
        self,
        gateway: DataGateway,
        *,
        opening_preview: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self.opening_preview = opening_preview or settings.conversation_opening_preview
        self._clock = clock
        self._in_flight: dict[ConversationKey, asyncio.Task[ConversationRecord]] = {}

    async def resolve(self, product_id: int, producer_id: str, buyer_id: str) -> ConversationRecord:
        """Return the conversation for the triple, creating it if absent.

        Raises:
            ConversationResolutionError: If the store could not be read or written.
        """
        key = (product_id, producer_id, buyer_id)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._find_or_create(*key))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def _find_or_create(
        self, product_id: int, producer_id: str, buyer_id: str
    ) -> ConversationRecord:
        try:
            existing = await self._gateway.find_conversation(product_id, producer_id, buyer_id)
            if existing is not None:
                return existing

            try:
                created = await self._gateway.create_conversation(
                    product_id,
                    producer_id,
                    buyer_id,
                    opening_preview=self.opening_preview,
                    created_at=self._clock(),
                )
            except DuplicateKeyError:
                logger.info(
                    "Conversation for product %s (%s, %s) created concurrently; re-reading",
                    product_id,
                    producer_id,
                    buyer_id,
                )
                existing = await self._gateway.find_conversation(product_id, producer_id, buyer_id)
                if existing is None:
                    raise ConversationResolutionError(
                        "Conversation vanished after a duplicate-key conflict"
                    ) from None
                return existing

            logger.info("Started conversation %s for product %s", created.id, product_id)
            return created
        except GatewayError as exc:
            logger.warning("Could not resolve conversation for product %s: %s", product_id, exc)
            raise ConversationResolutionError(str(exc)) from exc

    async def list_for_user(self, user_id: str) -> list[ConversationSummary]:
        """Conversations the user takes part in, most recently active first."""
        conversations = await self._gateway.list_conversations(user_id)
        ids = [conversation.id for conversation in conversations]
        latest = await self._gateway.latest_messages(ids)
        unread = await self._gateway.unread_conversation_ids(ids, user_id)

        summaries: list[ConversationSummary] = []
        for conversation in conversations:
            message = latest.get(conversation.id)
            if message is not None:
                last_message, last_at = message.content, message.created_at
            else:
                last_message = conversation.last_message
                last_at = conversation.last_message_at or conversation.created_at
            summaries.append(
                ConversationSummary(
                    conversation=conversation,
                    last_message=last_message,
                    last_message_at=last_at,
                    has_unread=conversation.id in unread,
                )
            )
        summaries.sort(key=lambda summary: summary.last_message_at, reverse=True)
        return summaries

    async def mark_read(self, conversation_id: int, reader_id: str) -> int:
        """Mark the other participant's messages as read."""
        return await self._gateway.mark_messages_read(conversation_id, reader_id, self._clock())


async def translate_for_viewer(
    translator: Translator,
    message: MessageRecord,
    viewer_language: str,
    canonical_language: str | None = None,
) -> MessageRecord:
    """Return the message with `content` in the viewer's language."""
    canonical_language = canonical_language or settings.canonical_language
    if viewer_language == canonical_language or not message.content:
        return message

    try:
        result = await translator.translate(message.content, viewer_language)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Translating message %s failed: %s", message.id, exc)
        return message
    return message.model_copy(update={"content": result.translated_text})


async def load_translated_messages(
    gateway: DataGateway,
    translator: Translator,
    conversation_id: int,
    viewer_language: str,
    canonical_language: str | None = None,
) -> list[MessageRecord]:
    """Fetch a conversation's messages newest first, translated for the viewer."""
    messages = await gateway.list_messages(conversation_id)
    return list(
        await asyncio.gather(
            *(
                translate_for_viewer(translator, message, viewer_language, canonical_language)
                for message in messages
            )
        )
    )


async def to_canonical(
    translator: Translator, text: str, canonical_language: str | None = None
) -> TranslationResult:
    """Translate composer text into the storage language.

    Falls back to the original text with no detected language when the
    translator fails.
    """
    try:
        return await translator.translate(text, canonical_language or settings.canonical_language)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Outgoing translation failed: %s", exc)
        return TranslationResult(translated_text=text, detected_language=None)
