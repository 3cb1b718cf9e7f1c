"""DetectionRecord model: one row per analyzed image."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase

# image_url value for the marker row stored when a mention carried no images
NO_IMAGES_MARKER = "no-images-found"


class DetectionRecord(SqlalchemyBase):
    """Persisted result of running one image through the detection pipeline."""

    __tablename__ = "detections"
    __table_args__ = (
        Index("idx_detections_source_id", "source_id"),
        Index("idx_detections_short_id", "short_id", unique=True),
        Index("idx_detections_author_handle", "author_handle"),
        Index("idx_detections_captured_at", "captured_at"),
        Index("idx_detections_active_short_id", "short_id", "deleted_at"),
    )

    source_id: Mapped[str] = mapped_column(String, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    image_url: Mapped[str] = mapped_column(String, nullable=False)
    author_handle: Mapped[str] = mapped_column(String, nullable=False)

    # Detection outcome; ai_probability is null when detection failed
    ai_probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    classification: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    short_id: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    reply_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    image_bytes: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    image_content_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Enrichment fields
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    meta_description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    detailed_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence_narrative: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self, include_image: bool = False) -> dict:
        """Serialize for the lookup API."""
        data = {
            "id": self.id,
            "source_id": self.source_id,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "image_url": self.image_url,
            "author_handle": self.author_handle,
            "ai_probability": self.ai_probability,
            "classification": self.classification,
            "processing_time_ms": self.processing_time_ms,
            "provider": self.provider,
            "short_id": self.short_id,
            "reply_id": self.reply_id,
            "image_content_type": self.image_content_type,
            "description": self.description,
            "meta_description": self.meta_description,
            "detailed_description": self.detailed_description,
            "confidence_narrative": self.confidence_narrative,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_image:
            data["image_bytes"] = self.image_bytes
        return data

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<DetectionRecord(id={self.id}, source_id={self.source_id}, "
            f"short_id={self.short_id}, ai_probability={self.ai_probability})>"
        )
