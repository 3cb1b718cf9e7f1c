"""Service layer for business logic and database operations."""

from .database import DatabaseService, init_db_service
from .detection_service import DetectionService, InsertResult, LookupStatus, RecordLookup
from .rate_limit_service import RateLimitService
from .short_id import ShortIdAllocator

__all__ = [
    "DatabaseService",
    "DetectionService",
    "InsertResult",
    "LookupStatus",
    "RateLimitService",
    "RecordLookup",
    "ShortIdAllocator",
    "init_db_service",
]
