"""Service for storing and retrieving detection records."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ..orm.detection import DetectionRecord
from .database import DatabaseService
from .short_id import ShortIdAllocator

logger = logging.getLogger(__name__)


class LookupStatus(Enum):
    """Retrieval state of a short id."""

    NOT_FOUND = "not_found"
    GONE = "gone"
    ACTIVE = "active"


@dataclass
class RecordLookup:
    """Result of a point lookup by short id."""

    status: LookupStatus
    record: Optional[DetectionRecord] = None


@dataclass
class InsertResult:
    """Outcome of an insert; short_id is reported even when the write failed."""

    success: bool
    short_id: Optional[str] = None


class DetectionService:
    """Persistence operations for DetectionRecord rows."""

    def __init__(self, db_service: DatabaseService, allocator: Optional[ShortIdAllocator] = None):
        self.db_service = db_service
        self.allocator = allocator or ShortIdAllocator(self.short_id_exists)

    async def short_id_exists(self, short_id: str) -> bool:
        """Check whether any record, deleted or not, already uses this short id."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(DetectionRecord.id).where(DetectionRecord.short_id == short_id.lower()).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def exists_by_source_id(self, source_id: str) -> bool:
        """Check if a mention has already been recorded."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(func.count(DetectionRecord.id)).where(DetectionRecord.source_id == source_id)
            )
            return result.scalar_one() > 0

    async def insert(self, record: DetectionRecord) -> InsertResult:
        """Persist a record, allocating a short id if it has none.

        Storage errors are logged rather than raised so the caller can still
        link to the attempted short id.
        """
        if record.short_id is None:
            record.short_id = await self.allocator.allocate()
            if record.short_id is None:
                logger.error(
                    "No short id available for detection %s; storing without one",
                    record.id,
                )
        else:
            record.short_id = record.short_id.lower()

        short_id = record.short_id
        try:
            async with self.db_service.session() as session:
                session.add(record)
        except IntegrityError as e:
            logger.error(
                "Insert conflict for detection %s (short_id=%s): %s",
                record.id,
                short_id,
                e.orig,
                extra={"event_type": "database_error", "detail": {"operation": "insert"}},
            )
            return InsertResult(success=False, short_id=short_id)
        except Exception as e:
            logger.error(
                "Failed to insert detection %s: %s",
                record.id,
                e,
                exc_info=True,
                extra={"event_type": "database_error", "detail": {"operation": "insert"}},
            )
            return InsertResult(success=False, short_id=short_id)

        logger.info(
            "Stored detection %s for source %s (short_id=%s)",
            record.id,
            record.source_id,
            short_id or "none",
        )
        return InsertResult(success=True, short_id=short_id)

    async def update_reply_id(self, record_id: str, reply_id: str) -> bool:
        """Attach the bot's reply id to a record.

        The id is written only while the column is empty; repeating the same
        update is reported as success, a different id is refused.
        """
        async with self.db_service.session() as session:
            result = await session.execute(
                update(DetectionRecord)
                .where(DetectionRecord.id == record_id, DetectionRecord.reply_id.is_(None))
                .values(reply_id=reply_id)
            )
            if result.rowcount == 1:
                return True

            existing = await session.execute(
                select(DetectionRecord.reply_id).where(DetectionRecord.id == record_id)
            )
            current = existing.scalar_one_or_none()

        if current is None:
            logger.warning("Cannot set reply id: detection %s not found", record_id)
            return False
        if current != reply_id:
            logger.warning(
                "Detection %s already has reply id %s, refusing %s", record_id, current, reply_id
            )
            return False
        return True

    async def find_by_short_id(self, short_id: str) -> RecordLookup:
        """Look up a record and report whether it is active, gone or unknown."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(DetectionRecord).where(DetectionRecord.short_id == short_id.lower())
            )
            record = result.scalar_one_or_none()

        if record is None:
            return RecordLookup(LookupStatus.NOT_FOUND)
        if record.deleted_at is not None:
            return RecordLookup(LookupStatus.GONE, record)
        return RecordLookup(LookupStatus.ACTIVE, record)

    async def soft_delete(self, short_id: str) -> tuple[bool, str]:
        """Mark a record deleted so its short id reports gone from now on."""
        lookup = await self.find_by_short_id(short_id)
        if lookup.status is LookupStatus.NOT_FOUND:
            return False, f'Short id "{short_id}" does not exist'
        if lookup.status is LookupStatus.GONE:
            return False, f'Short id "{short_id}" is already deleted'

        now = datetime.now(timezone.utc)
        async with self.db_service.session() as session:
            result = await session.execute(
                update(DetectionRecord)
                .where(
                    DetectionRecord.short_id == short_id.lower(),
                    DetectionRecord.deleted_at.is_(None),
                )
                .values(deleted_at=now)
            )
            changed = result.rowcount

        if not changed:
            return False, f'Failed to delete short id "{short_id}": no changes made'
        logger.info("Soft-deleted detection page %s", short_id)
        return True, f'Short id "{short_id}" has been soft-deleted'

    async def recent(self, limit: int = 50) -> list[DetectionRecord]:
        """Most recent non-deleted records, newest first."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(DetectionRecord)
                .where(DetectionRecord.deleted_at.is_(None))
                .order_by(DetectionRecord.captured_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
