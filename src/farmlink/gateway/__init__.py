"""Data gateway contract and reference implementation."""

from .base import (
    DataGateway,
    DuplicateKeyError,
    GatewayError,
    MalformedRowError,
    RemoteUnavailableError,
    Subscription,
)
from .sql import SqlDataGateway

__all__ = [
    "DataGateway",
    "DuplicateKeyError",
    "GatewayError",
    "MalformedRowError",
    "RemoteUnavailableError",
    "SqlDataGateway",
    "Subscription",
]
