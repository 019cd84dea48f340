"""
Storage contract for users and conversions, plus the in-memory implementation.
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol

from pdfxml.errors import ConflictError

logger = logging.getLogger(__name__)


_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def floor_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def ceil_ms(value: datetime) -> datetime:
    floored = floor_ms(value)
    if floored == value:
        return value
    return floored + timedelta(milliseconds=1)


def utcnow() -> datetime:
    """Current UTC time truncated to the millisecond precision MongoDB keeps."""
    return floor_ms(datetime.now(timezone.utc))


def filename_sort_key(filename: str) -> str:
    """Lower-case ASCII letters only, as MongoDB's $toLower does."""
    return filename.translate(_ASCII_LOWER)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    password: str
    created_at: datetime


@dataclass(frozen=True)
class NewConversion:
    user_id: str
    filename: str
    original_size: int
    xml_content: str

    def __post_init__(self):
        if self.original_size < 0:
            raise ValueError("original_size must be non-negative")


@dataclass(frozen=True)
class ConversionRecord:
    id: str
    user_id: str
    filename: str
    original_size: int
    xml_content: str
    converted_at: datetime


class SortField(str, Enum):
    FILENAME = "filename"
    CONVERTED_AT = "convertedAt"
    ORIGINAL_SIZE = "originalSize"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ConversionFilters:
    """Optional, AND-combined predicate over a user's conversions."""

    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    size_min: Optional[int] = None
    size_max: Optional[int] = None

    def __post_init__(self):
        # Naive datetimes are taken to be UTC. Bounds are narrowed to whole
        # milliseconds, the precision stored timestamps have in MongoDB.
        if self.date_from is not None:
            object.__setattr__(self, "date_from", ceil_ms(as_utc(self.date_from)))
        if self.date_to is not None:
            object.__setattr__(self, "date_to", floor_ms(as_utc(self.date_to)))

    def matches(self, conversion: ConversionRecord) -> bool:
        if self.search and self.search.lower() not in conversion.filename.lower():
            return False
        if self.date_from is not None and conversion.converted_at < self.date_from:
            return False
        if self.date_to is not None and conversion.converted_at > self.date_to:
            return False
        if self.size_min is not None and conversion.original_size < self.size_min:
            return False
        if self.size_max is not None and conversion.original_size > self.size_max:
            return False
        return True


@dataclass(frozen=True)
class SortOptions:
    field: SortField = SortField.CONVERTED_AT
    order: SortOrder = SortOrder.DESC

    def key(self, conversion: ConversionRecord):
        if self.field is SortField.FILENAME:
            return filename_sort_key(conversion.filename)
        if self.field is SortField.ORIGINAL_SIZE:
            return conversion.original_size
        return conversion.converted_at


@dataclass(frozen=True)
class PaginationOptions:
    page: int = 1
    limit: int = 50

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class DbClient(Protocol):
    """Interface every storage backend implements."""

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    async def create_user(self, email: str, password_hash: str) -> UserRecord:
        ...

    async def get_conversions(
        self,
        user_id: str,
        filters: Optional[ConversionFilters] = None,
        sort: Optional[SortOptions] = None,
        pagination: Optional[PaginationOptions] = None,
    ) -> list[ConversionRecord]:
        ...

    async def get_conversions_count(
        self, user_id: str, filters: Optional[ConversionFilters] = None
    ) -> int:
        ...

    async def get_conversion(self, conversion_id: str) -> Optional[ConversionRecord]:
        ...

    async def create_conversion(self, data: NewConversion) -> ConversionRecord:
        ...

    async def delete_conversion(self, conversion_id: str) -> bool:
        ...


class InMemoryDbClient:
    """List-backed storage used by default and whenever MongoDB is unreachable."""

    def __init__(self):
        self.users: list[UserRecord] = []
        self.conversions: list[ConversionRecord] = []
        self._next_user_id = 1
        self._next_conversion_id = 1
        logger.info("Using in-memory storage")

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.conversions.clear()

    def snapshot(self) -> tuple[list[UserRecord], list[ConversionRecord]]:
        return list(self.users), list(self.conversions)

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users:
            if user.email == email:
                return user
        return None

    async def create_user(self, email: str, password_hash: str) -> UserRecord:
        if await self.get_user_by_email(email) is not None:
            raise ConflictError("Email already exists")
        user = UserRecord(
            id=str(self._next_user_id),
            email=email,
            password=password_hash,
            created_at=utcnow(),
        )
        self._next_user_id += 1
        self.users.append(user)
        return user

    def _matching(
        self, user_id: str, filters: Optional[ConversionFilters]
    ) -> list[ConversionRecord]:
        return [
            conversion
            for conversion in self.conversions
            if conversion.user_id == user_id
            and (filters is None or filters.matches(conversion))
        ]

    async def get_conversions(
        self,
        user_id: str,
        filters: Optional[ConversionFilters] = None,
        sort: Optional[SortOptions] = None,
        pagination: Optional[PaginationOptions] = None,
    ) -> list[ConversionRecord]:
        sort = sort or SortOptions()
        # sorted() is stable with reverse=True too, so ties keep creation order.
        items = sorted(
            self._matching(user_id, filters),
            key=sort.key,
            reverse=sort.order is SortOrder.DESC,
        )
        if pagination:
            items = items[pagination.offset : pagination.offset + pagination.limit]
        return items

    async def get_conversions_count(
        self, user_id: str, filters: Optional[ConversionFilters] = None
    ) -> int:
        return len(self._matching(user_id, filters))

    async def get_conversion(self, conversion_id: str) -> Optional[ConversionRecord]:
        for conversion in self.conversions:
            if conversion.id == conversion_id:
                return conversion
        return None

    async def create_conversion(self, data: NewConversion) -> ConversionRecord:
        conversion = ConversionRecord(
            id=str(self._next_conversion_id),
            user_id=data.user_id,
            filename=data.filename,
            original_size=data.original_size,
            xml_content=data.xml_content,
            converted_at=utcnow(),
        )
        self._next_conversion_id += 1
        self.conversions.append(conversion)
        return conversion

    async def delete_conversion(self, conversion_id: str) -> bool:
        for index, conversion in enumerate(self.conversions):
            if conversion.id == conversion_id:
                del self.conversions[index]
                return True
        return False
