"""Credit balance endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_owner
from ..database import get_db
from ..schemas.course import CreditBalanceResponse
from ..services.credit_service import CreditLedger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("", response_model=CreditBalanceResponse)
def get_credits(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_owner),
):
    """The caller's balance. A first request opens the account with the initial grant."""
    return CreditBalanceResponse(
        owner=auth.owner,
        credits_remaining=CreditLedger(db).get_balance(auth.owner),
    )
