"""Persistence for job artifacts: variations, versions, images, fact checks."""

import uuid
from typing import Any, Dict, List

from ..database import utcnow
from ..models import (
    ContentVariation,
    ContentVersion,
    FactCheckRecord,
    GeneratedImage,
)
from .base import BaseRepository


class VariationRepository(BaseRepository[ContentVariation]):
    model_class = ContentVariation
    entity_kind = "content variation"

    def create_with_initial_version(
        self,
        owner: str,
        lesson_id: str,
        variation_type: str,
        content: str,
        metadata: Dict[str, Any],
    ) -> ContentVariation:
        """Insert a variation and its version 1 snapshot. Flushes only."""
        variation = ContentVariation(
            id=str(uuid.uuid4()),
            lesson_id=lesson_id,
            owner=owner,
            variation_type=variation_type,
            content=content,
            variation_metadata=metadata,
            status="complete",
        )
        self.db.add(variation)
        self.db.flush()
        self.db.add(ContentVersion(
            id=str(uuid.uuid4()),
            variation_id=variation.id,
            version_number=1,
            content=content,
            changes_made="Initial generation",
            is_humanized=False,
        ))
        self.db.flush()
        return variation

    def list_for_lesson(self, lesson_id: str) -> List[ContentVariation]:
        return (
            self.db.query(ContentVariation)
            .filter(ContentVariation.lesson_id == lesson_id)
            .order_by(ContentVariation.created_at.asc())
            .all()
        )


class ImageRepository(BaseRepository[GeneratedImage]):
    model_class = GeneratedImage
    entity_kind = "image"

    def create(self, owner: str, prompt: str, style: str, image_data: str) -> GeneratedImage:
        image = GeneratedImage(
            id=str(uuid.uuid4()),
            owner=owner,
            prompt=prompt,
            style=style,
            image_data=image_data,
        )
        self.db.add(image)
        self.db.flush()
        return image


class FactCheckRepository(BaseRepository[FactCheckRecord]):
    model_class = FactCheckRecord
    entity_kind = "fact check"

    def _base_query(self):
        return self.db.query(FactCheckRecord).filter(FactCheckRecord.status == "active")

    def create(
        self,
        owner: str,
        job_id: str,
        content: str,
        depth: str,
        report: Dict[str, Any],
    ) -> FactCheckRecord:
        record = FactCheckRecord(
            id=str(uuid.uuid4()),
            owner=owner,
            job_id=job_id,
            content_preview=content[:500],
            depth=depth,
            overall_accuracy=report["overall_accuracy"],
            total_claims=report["total_claims"],
            report=report,
            status="active",
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_for_owner(self, owner: str, limit: int = 20) -> List[FactCheckRecord]:
        return (
            self._base_query()
            .filter(FactCheckRecord.owner == owner)
            .order_by(FactCheckRecord.created_at.desc())
            .limit(limit)
            .all()
        )

    def soft_delete(self, record_id: str, owner: str) -> FactCheckRecord:
        record = self.get_owned(record_id, owner)
        record.status = "deleted"
        record.deleted_at = utcnow()
        self.db.flush()
        return record
