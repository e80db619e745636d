"""Shared API dependencies for the data gateway and translation client."""

from typing import Annotated

from fastapi import Depends

from farmlink.db.session import SessionLocal
from farmlink.gateway import DataGateway, SqlDataGateway
from farmlink.services.translation import Translator, get_translator


class _GatewaySingleton:
    """Singleton wrapper for the process-wide data gateway."""

    _instance: DataGateway | None = None

    @classmethod
    def get_instance(cls) -> DataGateway:
        if cls._instance is None:
            cls._instance = SqlDataGateway(SessionLocal)
        return cls._instance


def get_gateway() -> DataGateway:
    """Return the shared data gateway."""
    return _GatewaySingleton.get_instance()


def get_translator_dep() -> Translator:
    """Return the shared translation client."""
    return get_translator()


# Type aliases for dependency injection
GatewayDep = Annotated[DataGateway, Depends(get_gateway)]
TranslatorDep = Annotated[Translator, Depends(get_translator_dep)]
