"""
MongoDB-backed implementation of the storage contract.

``MongoConnection`` owns the pooled async client and the bounded-retry
connection handshake. ``MongoDbClient`` maps every contract operation onto
native queries and degrades read failures to empty results.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from pdfxml.config import Settings
from pdfxml.db import (
    ConversionFilters,
    ConversionRecord,
    NewConversion,
    PaginationOptions,
    SortField,
    SortOptions,
    SortOrder,
    UserRecord,
    as_utc,
    utcnow,
)
from pdfxml.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

USERS = "users"
CONVERSIONS = "conversions"

_FILENAME_SORT_KEY = "_filenameKey"
_SORT_FIELDS = {
    SortField.FILENAME: _FILENAME_SORT_KEY,
    SortField.CONVERTED_AT: "convertedAt",
    SortField.ORIGINAL_SIZE: "originalSize",
}

_CREDENTIALS = re.compile(r"^(mongodb(?:\+srv)?://)[^@/]+@")


def mask_uri(uri: str) -> str:
    """Hide credentials so the URI can be logged."""
    return _CREDENTIALS.sub(r"\1***:***@", uri)


def conversion_query(
    user_id: str, filters: Optional[ConversionFilters] = None
) -> dict[str, Any]:
    """Translate a filter predicate into a MongoDB query document."""
    query: dict[str, Any] = {"userId": user_id}
    if filters is None:
        return query
    if filters.search:
        query["filename"] = {"$regex": re.escape(filters.search), "$options": "i"}
    if filters.date_from is not None or filters.date_to is not None:
        converted_at: dict[str, Any] = {}
        if filters.date_from is not None:
            converted_at["$gte"] = filters.date_from
        if filters.date_to is not None:
            converted_at["$lte"] = filters.date_to
        query["convertedAt"] = converted_at
    if filters.size_min is not None or filters.size_max is not None:
        size: dict[str, Any] = {}
        if filters.size_min is not None:
            size["$gte"] = filters.size_min
        if filters.size_max is not None:
            size["$lte"] = filters.size_max
        query["originalSize"] = size
    return query


def conversions_pipeline(
    user_id: str,
    filters: Optional[ConversionFilters] = None,
    sort: Optional[SortOptions] = None,
    pagination: Optional[PaginationOptions] = None,
) -> list[dict[str, Any]]:
    """
    Build the aggregation pipeline for a filtered, sorted, paginated listing.

    Filenames sort on a lower-cased computed key. ``_id`` is the secondary key
    so ties come back in creation order, as the in-memory backend returns them.
    """
    sort = sort or SortOptions()
    direction = ASCENDING if sort.order is SortOrder.ASC else DESCENDING
    by_filename = sort.field is SortField.FILENAME

    pipeline: list[dict[str, Any]] = [{"$match": conversion_query(user_id, filters)}]
    if by_filename:
        pipeline.append(
            {"$addFields": {_FILENAME_SORT_KEY: {"$toLower": "$filename"}}}
        )
    pipeline.append({"$sort": {_SORT_FIELDS[sort.field]: direction, "_id": ASCENDING}})
    if pagination:
        pipeline.append({"$skip": pagination.offset})
        pipeline.append({"$limit": pagination.limit})
    if by_filename:
        pipeline.append({"$project": {_FILENAME_SORT_KEY: 0}})
    return pipeline


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _to_user(doc: dict) -> UserRecord:
    return UserRecord(
        id=str(doc["_id"]),
        email=doc["email"],
        password=doc["password"],
        created_at=as_utc(doc["createdAt"]),
    )


def _to_conversion(doc: dict) -> ConversionRecord:
    return ConversionRecord(
        id=str(doc["_id"]),
        user_id=doc["userId"],
        filename=doc["filename"],
        original_size=doc["originalSize"],
        xml_content=doc["xmlContent"],
        converted_at=as_utc(doc["convertedAt"]),
    )


class MongoConnection:
    """Pooled MongoDB client with a bounded-retry initial handshake."""

    def __init__(
        self,
        uri: str,
        db_name: str,
        *,
        max_pool_size: int = 10,
        min_pool_size: int = 5,
        connect_timeout_ms: int = 30000,
        socket_timeout_ms: int = 45000,
        server_selection_timeout_ms: int = 30000,
        max_attempts: int = 5,
        retry_delay_seconds: float = 2.0,
        attempt_timeout_seconds: float = 30.0,
        client_factory=AsyncMongoClient,
    ):
        self.uri = uri
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.attempts = 0
        self.connected = False
        self.client = client_factory(
            uri,
            maxPoolSize=max_pool_size,
            minPoolSize=min_pool_size,
            connectTimeoutMS=connect_timeout_ms,
            socketTimeoutMS=socket_timeout_ms,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            retryWrites=True,
            retryReads=True,
            tz_aware=True,
            connect=False,
        )
        self.db = self.client[db_name]

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoConnection":
        if not settings.mongodb_uri:
            raise ValueError("MONGODB_URI is required for MongoConnection")
        return cls(
            settings.mongodb_uri,
            settings.mongodb_db_name,
            max_pool_size=settings.mongo_max_pool_size,
            min_pool_size=settings.mongo_min_pool_size,
            connect_timeout_ms=settings.mongo_connect_timeout_ms,
            socket_timeout_ms=settings.mongo_socket_timeout_ms,
            server_selection_timeout_ms=settings.mongo_server_selection_timeout_ms,
            max_attempts=settings.mongo_max_connection_attempts,
            retry_delay_seconds=settings.mongo_retry_delay_seconds,
            attempt_timeout_seconds=settings.mongo_connect_attempt_timeout_seconds,
        )

    @property
    def masked_uri(self) -> str:
        return mask_uri(self.uri)

    def collection(self, name: str):
        return self.db[name]

    async def connect(self) -> bool:
        """
        Ping the server until it answers or the attempts run out. Read-only:
        indexes are created by the first successful probe.

        Each attempt is abandoned after ``attempt_timeout_seconds``. Returns
        False (never raises) when MongoDB stays unreachable; the driver keeps
        reconnecting in the background and the failover probe picks it up.
        """
        for attempt in range(1, self.max_attempts + 1):
            self.attempts = attempt
            logger.info(
                "Connecting to MongoDB at %s (attempt %d/%d)",
                self.masked_uri,
                attempt,
                self.max_attempts,
            )
            try:
                await asyncio.wait_for(
                    self.client.admin.command("ping"),
                    timeout=self.attempt_timeout_seconds,
                )
            except (PyMongoError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "MongoDB connection attempt %d/%d failed: %s",
                    attempt,
                    self.max_attempts,
                    str(exc) or type(exc).__name__,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_seconds)
                continue
            self.connected = True
            logger.info("Connected to MongoDB database %s", self.db.name)
            return True

        logger.error(
            "MongoDB unreachable after %d attempts; continuing with in-memory storage",
            self.max_attempts,
        )
        return False

    async def ensure_indexes(self) -> None:
        await self.db[USERS].create_index("email", unique=True)
        await self.db[CONVERSIONS].create_index(
            [("userId", ASCENDING), ("convertedAt", DESCENDING)]
        )

    async def close(self) -> None:
        await self.client.close()
        self.connected = False


@dataclass
class FailureStats:
    count: int = 0
    last_error: Optional[str] = None


class MongoDbClient:
    """
    Storage contract over the ``users`` and ``conversions`` collections.

    Reads, counts and deletes never raise: a failure is logged, counted in
    ``failures`` and reported as the empty result. Creates raise
    ``StorageError`` because a fabricated record would be unsafe.
    """

    def __init__(self, connection: MongoConnection, *, probe_timeout_seconds: float = 5.0):
        self.connection = connection
        self.probe_timeout_seconds = probe_timeout_seconds
        self.users = connection.collection(USERS)
        self.conversions = connection.collection(CONVERSIONS)
        self.connection_ok = False
        self.indexes_ready = False
        self.failures = FailureStats()

    def _record_failure(self, operation: str, exc: Exception) -> None:
        self.failures.count += 1
        self.failures.last_error = f"{operation}: {exc}"
        logger.error("MongoDB %s failed: %s", operation, exc)

    def _require_connection(self, operation: str) -> None:
        if not self.connection_ok:
            raise StorageError(f"MongoDB is not available for {operation}")

    def _require_unique_emails(self, operation: str) -> None:
        if not self.indexes_ready:
            raise StorageError(f"Unique email index missing; refusing {operation}")

    async def _ensure_indexes(self) -> None:
        try:
            await self.connection.ensure_indexes()
        except PyMongoError as exc:
            self._record_failure("ensure_indexes", exc)
            return
        self.indexes_ready = True
        logger.info("MongoDB indexes ensured")

    async def check_connection(self) -> bool:
        """
        Run a cheap query to verify the server really answers.

        Driver state can look healthy after the server went away, so this
        goes over the wire. The first successful probe also creates the
        indexes; an index failure is recorded but does not make the server
        unreachable.
        """
        try:
            await asyncio.wait_for(
                self.users.count_documents({}, limit=1),
                timeout=self.probe_timeout_seconds,
            )
        except (PyMongoError, asyncio.TimeoutError) as exc:
            if self.connection_ok:
                logger.warning("MongoDB connection lost: %s", str(exc) or type(exc).__name__)
            self.connection_ok = False
            return False
        if not self.connection_ok:
            logger.info("MongoDB connection verified")
        self.connection_ok = True
        if not self.indexes_ready:
            await self._ensure_indexes()
        return True

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        oid = _object_id(user_id)
        if oid is None or not self.connection_ok:
            return None
        try:
            doc = await self.users.find_one({"_id": oid})
        except PyMongoError as exc:
            self._record_failure("get_user_by_id", exc)
            return None
        return _to_user(doc) if doc else None

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        if not self.connection_ok:
            return None
        try:
            doc = await self.users.find_one({"email": email})
        except PyMongoError as exc:
            self._record_failure("get_user_by_email", exc)
            return None
        return _to_user(doc) if doc else None

    async def create_user(self, email: str, password_hash: str) -> UserRecord:
        self._require_connection("create_user")
        self._require_unique_emails("create_user")
        return await self._insert_user(email, password_hash, utcnow())

    async def insert_user_record(self, user: UserRecord) -> UserRecord:
        """Copy a user created elsewhere, keeping its creation time."""
        self._require_connection("insert_user_record")
        self._require_unique_emails("insert_user_record")
        return await self._insert_user(user.email, user.password, user.created_at)

    async def _insert_user(self, email, password_hash, created_at) -> UserRecord:
        doc = {"email": email, "password": password_hash, "createdAt": created_at}
        try:
            result = await self.users.insert_one(doc)
        except DuplicateKeyError as exc:
            raise ConflictError("Email already exists") from exc
        except PyMongoError as exc:
            self._record_failure("create_user", exc)
            raise StorageError("Could not create user") from exc
        return UserRecord(
            id=str(result.inserted_id),
            email=email,
            password=password_hash,
            created_at=created_at,
        )

    async def get_conversions(
        self,
        user_id: str,
        filters: Optional[ConversionFilters] = None,
        sort: Optional[SortOptions] = None,
        pagination: Optional[PaginationOptions] = None,
    ) -> list[ConversionRecord]:
        if not self.connection_ok:
            return []
        pipeline = conversions_pipeline(user_id, filters, sort, pagination)
        try:
            cursor = await self.conversions.aggregate(pipeline)
            docs = await cursor.to_list(None)
        except PyMongoError as exc:
            self._record_failure("get_conversions", exc)
            return []
        return [_to_conversion(doc) for doc in docs]

    async def get_conversions_count(
        self, user_id: str, filters: Optional[ConversionFilters] = None
    ) -> int:
        if not self.connection_ok:
            return 0
        try:
            return await self.conversions.count_documents(
                conversion_query(user_id, filters)
            )
        except PyMongoError as exc:
            self._record_failure("get_conversions_count", exc)
            return 0

    async def get_conversion(self, conversion_id: str) -> Optional[ConversionRecord]:
        oid = _object_id(conversion_id)
        if oid is None or not self.connection_ok:
            return None
        try:
            doc = await self.conversions.find_one({"_id": oid})
        except PyMongoError as exc:
            self._record_failure("get_conversion", exc)
            return None
        return _to_conversion(doc) if doc else None

    async def create_conversion(self, data: NewConversion) -> ConversionRecord:
        self._require_connection("create_conversion")
        return await self._insert_conversion(
            data.user_id, data.filename, data.original_size, data.xml_content, utcnow()
        )

    async def insert_conversion_record(self, record: ConversionRecord) -> ConversionRecord:
        """Copy a conversion created elsewhere, keeping its conversion time."""
        self._require_connection("insert_conversion_record")
        return await self._insert_conversion(
            record.user_id,
            record.filename,
            record.original_size,
            record.xml_content,
            record.converted_at,
        )

    async def _insert_conversion(
        self, user_id, filename, original_size, xml_content, converted_at
    ) -> ConversionRecord:
        doc = {
            "userId": user_id,
            "filename": filename,
            "originalSize": original_size,
            "xmlContent": xml_content,
            "convertedAt": converted_at,
        }
        try:
            result = await self.conversions.insert_one(doc)
        except PyMongoError as exc:
            self._record_failure("create_conversion", exc)
            raise StorageError("Could not store conversion") from exc
        return ConversionRecord(
            id=str(result.inserted_id),
            user_id=user_id,
            filename=filename,
            original_size=original_size,
            xml_content=xml_content,
            converted_at=converted_at,
        )

    async def delete_conversion(self, conversion_id: str) -> bool:
        oid = _object_id(conversion_id)
        if oid is None or not self.connection_ok:
            return False
        try:
            result = await self.conversions.delete_one({"_id": oid})
        except PyMongoError as exc:
            self._record_failure("delete_conversion", exc)
            return False
        return result.deleted_count > 0

    def stats(self) -> dict:
        return {
            "connection_ok": self.connection_ok,
            "indexes_ready": self.indexes_ready,
            "failure_count": self.failures.count,
            "last_error": self.failures.last_error,
        }
