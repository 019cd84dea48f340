"""
Backend-agnostic storage functions used by the route layer.

Each call resolves the active backend once, at invocation, through the
process-wide selector.
"""

from __future__ import annotations

import logging
from typing import Optional

from pymongo.errors import PyMongoError

from pdfxml.config import Settings, get_settings
from pdfxml.db import (
    ConversionFilters,
    ConversionRecord,
    NewConversion,
    PaginationOptions,
    SortOptions,
    UserRecord,
)
from pdfxml.mongo import MongoConnection, MongoDbClient
from pdfxml.selector import BackendSelector

logger = logging.getLogger(__name__)

_selector: BackendSelector | None = None


def build_selector(settings: Settings) -> BackendSelector:
    """Create a selector with MongoDB attached when it is configured."""
    if settings.use_in_memory_backends or not settings.mongodb_uri:
        logger.info("MongoDB not configured; using in-memory storage only")
        return BackendSelector(probe_interval_seconds=settings.probe_interval_seconds)
    try:
        connection = MongoConnection.from_settings(settings)
    except PyMongoError as exc:
        logger.error("Failed to initialize MongoDB storage: %s", exc)
        return BackendSelector(probe_interval_seconds=settings.probe_interval_seconds)
    persistent = MongoDbClient(
        connection, probe_timeout_seconds=settings.probe_timeout_seconds
    )
    return BackendSelector(
        persistent=persistent, probe_interval_seconds=settings.probe_interval_seconds
    )


def configure(selector: BackendSelector) -> None:
    global _selector
    _selector = selector


def get_selector() -> BackendSelector:
    """
    Return the process-wide selector, building one from settings on first use.
    """
    global _selector
    if _selector is None:
        _selector = build_selector(get_settings())
    return _selector


async def get_user_by_id(user_id: str) -> Optional[UserRecord]:
    return await get_selector().active.get_user_by_id(user_id)


async def get_user_by_email(email: str) -> Optional[UserRecord]:
    return await get_selector().active.get_user_by_email(email)


async def create_user(email: str, password_hash: str) -> UserRecord:
    return await get_selector().active.create_user(email, password_hash)


async def get_conversions(
    user_id: str,
    filters: Optional[ConversionFilters] = None,
    sort: Optional[SortOptions] = None,
    pagination: Optional[PaginationOptions] = None,
) -> list[ConversionRecord]:
    return await get_selector().active.get_conversions(
        user_id, filters, sort, pagination
    )


async def get_conversions_count(
    user_id: str, filters: Optional[ConversionFilters] = None
) -> int:
    return await get_selector().active.get_conversions_count(user_id, filters)


async def get_conversion(conversion_id: str) -> Optional[ConversionRecord]:
    return await get_selector().active.get_conversion(conversion_id)


async def create_conversion(data: NewConversion) -> ConversionRecord:
    return await get_selector().active.create_conversion(data)


async def delete_conversion(conversion_id: str) -> bool:
    return await get_selector().active.delete_conversion(conversion_id)
