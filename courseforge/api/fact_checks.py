"""Fact-check history endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_owner
from ..database import get_db
from ..repositories import FactCheckRepository
from ..schemas.research import FactCheckHistoryItem

router = APIRouter(prefix="/api/fact-checks", tags=["fact-checks"])


@router.get("", response_model=List[FactCheckHistoryItem])
def list_fact_checks(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    return FactCheckRepository(db).list_for_owner(auth.owner, limit)


@router.delete("/{record_id}", status_code=204)
def delete_fact_check(
    record_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    FactCheckRepository(db).soft_delete(record_id, auth.owner)
    db.commit()
