"""Per-user runtime context shared by the order and chat components.

A single `AppContext` is built at startup and handed to every component that
needs to know who the current user is or which language they read. Components
that render text subscribe to language changes instead of polling a global.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from farmlink.core.languages import is_supported
from farmlink.core.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

LanguageListener = Callable[[str], None]


class LanguageStore(Protocol):
    """Persistence for the user's preferred display language."""

    def load_language(self) -> str | None: ...

    def save_language(self, language: str) -> None: ...


class AppContext:
    """Explicit holder for the current user, language and configuration."""

    def __init__(
        self,
        user_id: str,
        *,
        language: str | None = None,
        store: LanguageStore | None = None,
        config: Settings | None = None,
    ) -> None:
        self.user_id = user_id
        self.settings = config or default_settings
        self._store = store
        self._listeners: list[LanguageListener] = []

        initial = language
        if initial is None and store is not None:
            initial = store.load_language()
        if not is_supported(initial):
            initial = self.settings.default_language
        self._language: str = initial  # type: ignore[assignment]

    @property
    def language(self) -> str:
        return self._language

    @property
    def canonical_language(self) -> str:
        return self.settings.canonical_language

    def set_language(self, language: str) -> bool:
        """Switch the display language.

        Returns:
            True if the language changed, False if it was unsupported or unchanged.
        """
        if not is_supported(language) or language == self._language:
            return False

        self._language = language
        if self._store is not None:
            self._store.save_language(language)
        logger.info("Display language for %s changed to %s", self.user_id, language)

        for listener in list(self._listeners):
            listener(language)
        return True

    def on_language_change(self, listener: LanguageListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
