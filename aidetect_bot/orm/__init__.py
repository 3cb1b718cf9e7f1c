"""ORM models for database persistence."""

from .base import Base, SqlalchemyBase
from .detection import NO_IMAGES_MARKER, DetectionRecord

__all__ = [
    "Base",
    "SqlalchemyBase",
    "DetectionRecord",
    "NO_IMAGES_MARKER",
]
