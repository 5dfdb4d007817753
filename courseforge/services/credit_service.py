"""Credit ledger: per-owner usage allowance and the static price table.

The owner id from the identity provider is the only key the ledger uses.
Balances are checked before billable work starts and debited only after it
completes (batches are the exception: they are debited upfront, see
``BatchCoordinator.prepare``). A debit larger than the balance clamps the
balance to zero; it is never rejected, because the work is already done.
"""

import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import utcnow
from ..exceptions import InsufficientCreditsError
from ..models import CreditAccount, JobType
from ..schemas.jobs import EnhancementConfig, EnhancementMode, FactCheckConfig, FactCheckDepth

logger = logging.getLogger(__name__)

# Fixed price per job type. Enhancement and fact-check are priced by
# mode/depth in cost_for().
COSTS = {
    JobType.OUTLINE: 5,
    JobType.LESSON_PLAN: 3,
    JobType.SCRIPT: 4,
    JobType.QUIZ: 3,
    JobType.CONTENT_VARIATION: 4,
    JobType.ENHANCEMENT: 3,
    JobType.IMAGE: 2,
    JobType.FACT_CHECK: 2,
    JobType.RESEARCH: 2,
    JobType.OPTIMIZATION: 2,
    JobType.BATCH_MEMBER: 3,
}

HUMANIZE_COST = 2

FACT_CHECK_COSTS = {
    FactCheckDepth.BASIC: 1,
    FactCheckDepth.THOROUGH: 2,
    FactCheckDepth.COMPREHENSIVE: 3,
}

BATCH_CREDITS_PER_ITEM = COSTS[JobType.BATCH_MEMBER]


def cost_for(job_type: JobType, config: Optional[BaseModel] = None) -> int:
    """Credits charged for one job of *job_type* with *config*."""
    job_type = JobType(job_type)
    if job_type == JobType.ENHANCEMENT and isinstance(config, EnhancementConfig):
        return HUMANIZE_COST if config.mode == EnhancementMode.HUMANIZE else COSTS[job_type]
    if job_type == JobType.FACT_CHECK and isinstance(config, FactCheckConfig):
        return FACT_CHECK_COSTS[config.depth]
    return COSTS[job_type]


class CreditLedger:
    """Owner-keyed credit accounts.

    Methods that change balances commit unless told not to, so callers that
    need the debit inside a larger transaction pass ``commit=False``.
    """

    def __init__(self, db: Session, initial_credits: Optional[int] = None):
        self.db = db
        self.initial_credits = settings.initial_credits if initial_credits is None else initial_credits

    def _find(self, owner: str) -> Optional[CreditAccount]:
        return self.db.query(CreditAccount).filter(CreditAccount.owner == owner).first()

    def ensure_account(self, owner: str) -> CreditAccount:
        """Return the owner's account, creating it with the initial grant.

        A concurrent creator may win the unique constraint; the loser rolls
        back and returns the winner's row.
        """
        account = self._find(owner)
        if account is not None:
            return account

        account = CreditAccount(owner=owner, credits_remaining=self.initial_credits)
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self._find(owner)
            if existing is None:
                raise
            logger.info(f"Credit account for {owner} created concurrently; using existing row")
            return existing

        self.db.refresh(account)
        logger.info(f"Created credit account for {owner} with {self.initial_credits} credits")
        return account

    def get_balance(self, owner: str) -> int:
        return self.ensure_account(owner).credits_remaining

    def require_balance(self, owner: str, amount: int) -> CreditAccount:
        """Fail with InsufficientCreditsError unless *owner* can afford *amount*."""
        account = self.ensure_account(owner)
        if account.credits_remaining < amount:
            raise InsufficientCreditsError(required=amount, available=account.credits_remaining)
        return account

    def debit(self, owner: str, amount: int, commit: bool = True) -> CreditAccount:
        """Atomically subtract *amount*, clamping the balance at zero.

        The arithmetic happens in a single UPDATE so two debits for the same
        owner completing together cannot lose an update.
        """
        if amount < 0:
            raise ValueError("Debit amount must be non-negative")
        self.ensure_account(owner)
        self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.owner == owner)
            .values(
                credits_remaining=case(
                    (CreditAccount.credits_remaining >= amount, CreditAccount.credits_remaining - amount),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        account = self._find(owner)
        self.db.refresh(account)
        logger.info(f"Debited {amount} credits from {owner}; {account.credits_remaining} remaining")
        return account

    def grant(self, owner: str, amount: int) -> CreditAccount:
        """Add *amount* credits (purchases, refunds, test setup)."""
        if amount < 0:
            raise ValueError("Grant amount must be non-negative")
        self.ensure_account(owner)
        self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.owner == owner)
            .values(credits_remaining=CreditAccount.credits_remaining + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        account = self._find(owner)
        self.db.refresh(account)
        return account

    def set_balance(self, owner: str, amount: int) -> CreditAccount:
        """Overwrite the balance. Admin and test use only."""
        account = self.ensure_account(owner)
        account.credits_remaining = max(0, amount)
        self.db.commit()
        self.db.refresh(account)
        return account
