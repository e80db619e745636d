# src/farmlink/api/v1/endpoints/conversations.py
"""Negotiation chat endpoints for the FarmLink API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from farmlink.api.v1.dependencies import GatewayDep, TranslatorDep
from farmlink.core.languages import is_supported
from farmlink.core.settings import settings
from farmlink.gateway import DuplicateKeyError, GatewayError
from farmlink.schemas.conversation import (
    ConversationListItem,
    ConversationResolve,
    ConversationResponse,
    MarkRead,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    MessageSent,
)
from farmlink.schemas.records import ConversationRecord
from farmlink.services.conversations import (
    ConversationResolutionError,
    ConversationResolver,
    load_translated_messages,
    message_preview,
    to_canonical,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Conversation store unavailable",
    )


async def _require_conversation(gateway: GatewayDep, conversation_id: int) -> ConversationRecord:
    try:
        conversation = await gateway.get_conversation(conversation_id)
    except GatewayError as exc:
        raise _store_unavailable() from exc
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


@router.post("/resolve", response_model=ConversationResponse)
async def resolve_conversation(
    payload: ConversationResolve, gateway: GatewayDep
) -> ConversationResponse:
    """Return the conversation for a product/producer/buyer triple, creating it if needed."""
    resolver = ConversationResolver(gateway)
    try:
        conversation = await resolver.resolve(
            payload.product_id, payload.producer_id, payload.buyer_id
        )
    except ConversationResolutionError as exc:
        raise _store_unavailable() from exc
    return ConversationResponse.model_validate(conversation)


@router.get("/", response_model=list[ConversationListItem])
async def list_conversations(
    gateway: GatewayDep,
    user_id: str = Query(..., min_length=1),
) -> list[ConversationListItem]:
    """List a user's conversations, most recently active first."""
    try:
        summaries = await ConversationResolver(gateway).list_for_user(user_id)
    except GatewayError as exc:
        raise _store_unavailable() from exc

    return [
        ConversationListItem(
            conversation=ConversationResponse.model_validate(summary.conversation),
            counterpart_id=summary.conversation.counterpart_of(user_id),
            last_message=summary.last_message,
            last_message_at=summary.last_message_at,
            has_unread=summary.has_unread,
        )
        for summary in summaries
    ]


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: int,
    gateway: GatewayDep,
    translator: TranslatorDep,
    lang: str = Query(settings.canonical_language, description="Viewer's display language"),
) -> list[MessageResponse]:
    """Return messages newest first, translated into the viewer's language."""
    if not is_supported(lang):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported language: {lang}",
        )
    await _require_conversation(gateway, conversation_id)

    try:
        messages = await load_translated_messages(gateway, translator, conversation_id, lang)
    except GatewayError as exc:
        raise _store_unavailable() from exc
    return [MessageResponse.model_validate(message) for message in messages]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageSent,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    payload: MessageCreate,
    gateway: GatewayDep,
    translator: TranslatorDep,
) -> MessageSent:
    """Store a message in the canonical language."""
    conversation = await _require_conversation(gateway, conversation_id)
    if payload.sender_id not in (conversation.producer_id, conversation.buyer_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Sender is not part of this conversation",
        )

    text = payload.content.strip()
    if not text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message content is empty",
        )
    result = await to_canonical(translator, text)
    content = result.translated_text or text

    try:
        record = await gateway.insert_message(
            conversation_id, payload.sender_id, content, client_ref=payload.client_ref
        )
    except DuplicateKeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Message with this client_ref was already stored",
        ) from exc
    except GatewayError as exc:
        raise _store_unavailable() from exc

    try:
        await gateway.update_conversation_preview(
            conversation_id,
            preview=message_preview(record.content),
            at=record.created_at,
            sender_id=record.sender_id,
        )
    except GatewayError as exc:
        logger.warning("Preview update for conversation %s failed: %s", conversation_id, exc)

    return MessageSent(
        **MessageResponse.model_validate(record).model_dump(),
        detected_language=result.detected_language,
    )


@router.put("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(conversation_id: int, payload: MarkRead, gateway: GatewayDep) -> MarkReadResponse:
    """Mark the other participant's messages as read."""
    await _require_conversation(gateway, conversation_id)
    try:
        updated = await ConversationResolver(gateway).mark_read(conversation_id, payload.reader_id)
    except GatewayError as exc:
        raise _store_unavailable() from exc
    return MarkReadResponse(updated=updated)
