"""
Runtime selection between the in-memory and MongoDB storage backends.

The selector is the only writer of the active backend. It probes MongoDB on
a fixed interval, switches to it when it answers and falls back to memory
when it stops answering. The first switch to MongoDB also copies whatever
was created in memory; that copy is attempted once per process.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pdfxml.db import DbClient, InMemoryDbClient
from pdfxml.errors import StorageError
from pdfxml.mongo import MongoDbClient

logger = logging.getLogger(__name__)


class BackendState(str, Enum):
    MEMORY_ACTIVE = "MEMORY_ACTIVE"
    PERSISTENT_ACTIVE = "PERSISTENT_ACTIVE"


@dataclass
class MigrationReport:
    users_copied: int = 0
    users_skipped: int = 0
    conversions_copied: int = 0
    failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


class BackendSelector:
    def __init__(
        self,
        memory: Optional[InMemoryDbClient] = None,
        persistent: Optional[MongoDbClient] = None,
        *,
        probe_interval_seconds: float = 30.0,
    ):
        self.memory = memory or InMemoryDbClient()
        self.persistent = persistent
        self.probe_interval_seconds = probe_interval_seconds
        self.state = BackendState.MEMORY_ACTIVE
        self.migration_attempted = False
        self.last_migration: Optional[MigrationReport] = None
        self.switch_count = 0
        self.probe_failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> DbClient:
        if self.state is BackendState.PERSISTENT_ACTIVE and self.persistent is not None:
            return self.persistent
        return self.memory

    def _switch(self, state: BackendState) -> bool:
        if state is self.state:
            return False
        self.state = state
        self.switch_count += 1
        if state is BackendState.PERSISTENT_ACTIVE:
            logger.info("Now using: MongoDB storage")
        else:
            logger.warning("Now using: in-memory storage (MongoDB unreachable)")
        return True

    async def check_once(self) -> BackendState:
        """Probe MongoDB and move to the matching state. Never raises."""
        if self.persistent is None:
            self._switch(BackendState.MEMORY_ACTIVE)
            return self.state

        reachable = await self.persistent.check_connection()
        if not reachable:
            self.probe_failures += 1
            self._switch(BackendState.MEMORY_ACTIVE)
            return self.state

        if self._switch(BackendState.PERSISTENT_ACTIVE) and not self.migration_attempted:
            self.migration_attempted = True
            self.last_migration = await self._migrate()
        return self.state

    async def _migrate(self) -> MigrationReport:
        """Best-effort copy of in-memory data into MongoDB."""
        report = MigrationReport()
        users, conversions = self.memory.snapshot()
        logger.info(
            "Migrating %d users and %d conversions from memory to MongoDB",
            len(users),
            len(conversions),
        )
        user_ids: dict[str, str] = {}
        for user in users:
            try:
                existing = await self.persistent.get_user_by_email(user.email)
                if existing is not None:
                    user_ids[user.id] = existing.id
                    report.users_skipped += 1
                    continue
                copied = await self.persistent.insert_user_record(user)
            except StorageError as exc:
                report.failures.append(f"user {user.email}: {exc}")
                continue
            user_ids[user.id] = copied.id
            report.users_copied += 1

        for conversion in conversions:
            record = dataclasses.replace(
                conversion, user_id=user_ids.get(conversion.user_id, conversion.user_id)
            )
            try:
                await self.persistent.insert_conversion_record(record)
            except StorageError as exc:
                report.failures.append(f"conversion {conversion.id}: {exc}")
                continue
            report.conversions_copied += 1

        if report.failures:
            logger.error(
                "Migration to MongoDB finished with %d failures; it will not be retried",
                len(report.failures),
            )
        else:
            logger.info(
                "Migration to MongoDB completed: %d users, %d conversions",
                report.users_copied,
                report.conversions_copied,
            )
        return report

    async def run(self) -> None:
        while True:
            try:
                await self.check_once()
            except Exception as exc:
                logger.exception("Storage probe failed: %s", exc)
            await asyncio.sleep(self.probe_interval_seconds)

    def start(self) -> None:
        if self.persistent is None or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "migration_attempted": self.migration_attempted,
            "last_migration": self.last_migration.as_dict() if self.last_migration else None,
            "switch_count": self.switch_count,
            "probe_failures": self.probe_failures,
            "persistent": self.persistent.stats() if self.persistent else None,
        }
