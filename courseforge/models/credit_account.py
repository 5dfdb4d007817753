"""Credit account model: one per owner."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from ..database import Base, utcnow


class CreditAccount(Base):
    """Remaining usage allowance of an owner. Never negative."""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_credit_accounts_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False, unique=True)
    credits_remaining = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
