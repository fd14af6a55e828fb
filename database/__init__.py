"""Database models and utilities for Meu Carrim."""

from .errors import InvalidArgumentError, NotFoundError
from .models import (
    Base,
    Category,
    Product,
    Market,
    PriceHistory,
    IngestionLog,
    get_engine,
    get_session,
    init_database,
)
from .stores import MarketStore, PriceHistoryStore, ProductStore

__all__ = [
    "InvalidArgumentError",
    "NotFoundError",
    "Base",
    "Category",
    "Product",
    "Market",
    "PriceHistory",
    "IngestionLog",
    "get_engine",
    "get_session",
    "init_database",
    "MarketStore",
    "PriceHistoryStore",
    "ProductStore",
]
