# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")

from farmlink.api.v1.dependencies import get_gateway, get_translator_dep  # noqa: E402
from farmlink.core.context import AppContext  # noqa: E402
from farmlink.core.settings import Settings  # noqa: E402
from farmlink.db.local import create_local_engine, local_session_factory  # noqa: E402
from farmlink.db.session import Base  # noqa: E402
from farmlink.gateway import RemoteUnavailableError, SqlDataGateway  # noqa: E402
from farmlink.main import app as fastapi_app  # noqa: E402
from farmlink.models import Conversation, Message, Order, OrderItem  # noqa: E402
from farmlink.schemas.records import MessageRecord  # noqa: E402
from farmlink.services.offline_queue import OfflineQueue  # noqa: E402
from farmlink.services.preferences import PreferenceStore  # noqa: E402
from farmlink.services.translation import TranslationResult, Translator  # noqa: E402

TEST_DB_URL = "sqlite://"
BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

_ORDER_COUNTER = count(1)
_MESSAGE_COUNTER = count(1)


def _memory_engine() -> Engine:
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def local_factory() -> Generator[sessionmaker, None, None]:
    local_engine = create_local_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield local_session_factory(local_engine)
    finally:
        local_engine.dispose()


class FlakyGateway(SqlDataGateway):
    """SQL gateway whose message inserts can be switched off or lose their ack."""

    def __init__(self, session_factory: sessionmaker) -> None:
        super().__init__(session_factory)
        self.offline = False
        self.drop_ack = False
        self.insert_attempts = 0

    async def insert_message(self, conversation_id, sender_id, content, *, client_ref=None) -> MessageRecord:
        self.insert_attempts += 1
        if self.offline:
            raise RemoteUnavailableError("network unreachable")
        record = await super().insert_message(
            conversation_id, sender_id, content, client_ref=client_ref
        )
        if self.drop_ack:
            raise RemoteUnavailableError("connection reset before response")
        return record


@pytest.fixture()
def gateway(session_factory: sessionmaker) -> FlakyGateway:
    return FlakyGateway(session_factory)


class FakeTranslator(Translator):
    """Deterministic translator: English passes through, other targets are tagged."""

    def __init__(
        self,
        *,
        detected: dict[str, str] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.detected = detected or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    async def translate(self, text: str, target_language: str) -> TranslationResult:
        self.calls.append((text, target_language))
        if text in self.failing:
            raise RuntimeError(f"translation backend rejected {text!r}")
        translated = text if target_language == "en" else f"[{target_language}] {text}"
        return TranslationResult(translated_text=translated, detected_language=self.detected.get(text))


@pytest.fixture()
def translator() -> FakeTranslator:
    return FakeTranslator()


@pytest.fixture()
def test_settings() -> Settings:
    """Settings with timers short enough for tests."""
    return Settings(
        SILENCE_TIMEOUT_SECONDS=0.05,
        REMOTE_TIMEOUT_SECONDS=1.0,
        ORDER_ADVANCE_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture()
def preferences(local_factory: sessionmaker) -> PreferenceStore:
    return PreferenceStore(local_factory)


@pytest.fixture()
def offline_queue(local_factory: sessionmaker) -> OfflineQueue:
    return OfflineQueue(local_factory, max_entries=200)


@pytest.fixture()
def make_context(
    preferences: PreferenceStore, test_settings: Settings
) -> Callable[..., AppContext]:
    def _make(user_id: str, language: str | None = None) -> AppContext:
        return AppContext(user_id, language=language, store=preferences, config=test_settings)

    return _make


@pytest.fixture()
def create_order(session_factory: sessionmaker) -> Callable[..., str]:
    """Persist an order and return its id."""

    def _create(
        buyer_id: str = "r1",
        status: str = "ordered",
        items: list[tuple[int, str, str]] | None = None,
    ) -> str:
        index = next(_ORDER_COUNTER)
        created = BASE_TIME + timedelta(minutes=index)
        with session_factory() as db:
            order = Order(
                buyer_id=buyer_id,
                status=status,
                created_at=created,
                updated_at=created,
            )
            for product_id, quantity, unit_price in items or [(7, "2", "40.00")]:
                order.items.append(
                    OrderItem(
                        product_id=product_id,
                        quantity=Decimal(quantity),
                        unit_price=Decimal(unit_price),
                    )
                )
            db.add(order)
            db.commit()
            return order.id

    return _create


@pytest.fixture()
def create_conversation(session_factory: sessionmaker) -> Callable[..., int]:
    def _create(product_id: int = 7, producer_id: str = "f1", buyer_id: str = "r1") -> int:
        with session_factory() as db:
            conversation = Conversation(
                product_id=product_id,
                producer_id=producer_id,
                buyer_id=buyer_id,
                last_message="Conversation started",
                last_message_at=BASE_TIME,
                created_at=BASE_TIME,
            )
            db.add(conversation)
            db.commit()
            return conversation.id

    return _create


@pytest.fixture()
def add_message(session_factory: sessionmaker) -> Callable[..., int]:
    def _add(conversation_id: int, sender_id: str, content: str, *, read: bool = False) -> int:
        index = next(_MESSAGE_COUNTER)
        created = BASE_TIME + timedelta(seconds=index)
        with session_factory() as db:
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                created_at=created,
                read_at=created if read else None,
            )
            db.add(message)
            db.commit()
            return message.id

    return _add


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI, gateway: FlakyGateway, translator: FakeTranslator
) -> Iterator[TestClient]:
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_translator_dep] = lambda: translator
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_gateway, None)
        app.dependency_overrides.pop(get_translator_dep, None)


@pytest.fixture()
def fetch_rows(session_factory: sessionmaker) -> Callable[[Any], list[Any]]:
    """Read every row of a model straight from the test database."""

    def _fetch(model: Any) -> list[Any]:
        with session_factory() as db:
            return list(db.query(model).all())

    return _fetch


@pytest.fixture()
def make_translator() -> Callable[..., FakeTranslator]:
    return FakeTranslator
