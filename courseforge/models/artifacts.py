"""Standalone artifacts of image and fact-check jobs."""

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from ..database import Base, utcnow


class GeneratedImage(Base):
    __tablename__ = "generated_images"

    id = Column(String(50), primary_key=True)
    owner = Column(String(255), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    style = Column(String(50), nullable=False, default="realistic")
    # data: URL or provider URL
    image_data = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class FactCheckRecord(Base):
    """History entry for a fact-check job. Deleted logically."""

    __tablename__ = "fact_checks"

    id = Column(String(50), primary_key=True)
    owner = Column(String(255), nullable=False, index=True)
    job_id = Column(String(50), nullable=False, index=True)
    content_preview = Column(Text, nullable=False)
    depth = Column(String(20), nullable=False)
    overall_accuracy = Column(Integer, nullable=False)
    total_claims = Column(Integer, nullable=False)
    report = Column(JSON, nullable=False)

    # Allowed values: active, deleted
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
