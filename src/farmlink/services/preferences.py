"""Device-local user preferences."""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from farmlink.core.languages import is_supported
from farmlink.models.local import LocalSetting

LANGUAGE_KEY = "selected_language"


class PreferenceStore:
    """Key/value preferences kept in the local store."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        with self._session_factory() as db:
            row = db.get(LocalSetting, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.get(LocalSetting, key)
            if row is None:
                db.add(LocalSetting(key=key, value=value))
            else:
                row.value = value
            db.commit()

    def load_language(self) -> str | None:
        language = self.get(LANGUAGE_KEY)
        return language if is_supported(language) else None

    def save_language(self, language: str) -> None:
        self.set(LANGUAGE_KEY, language)
