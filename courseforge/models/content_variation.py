"""Derivative content produced from a lesson script."""

import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class VariationType(str, enum.Enum):
    YOUTUBE_SCRIPT = "youtube_script"
    BLOG_POST = "blog_post"
    EBOOK_CHAPTER = "ebook_chapter"


class ContentVariation(Base):
    __tablename__ = "content_variations"

    id = Column(String(50), primary_key=True)
    lesson_id = Column(String(50), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    owner = Column(String(255), nullable=False, index=True)
    variation_type = Column(String(30), nullable=False)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    variation_metadata = Column("metadata", JSON, nullable=True)
    status = Column(String(20), nullable=False, default="complete")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    versions = relationship(
        "ContentVersion",
        back_populates="variation",
        cascade="all, delete-orphan",
        order_by="ContentVersion.version_number",
    )


class ContentVersion(Base):
    """Immutable snapshot of a variation's content."""

    __tablename__ = "content_versions"

    id = Column(String(50), primary_key=True)
    variation_id = Column(
        String(50), ForeignKey("content_variations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    changes_made = Column(Text, nullable=True)
    is_humanized = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    variation = relationship("ContentVariation", back_populates="versions")
