"""Tests for the credit ledger and the price table."""

import threading
from unittest.mock import patch

import pytest

from courseforge.database import SessionLocal
from courseforge.exceptions import InsufficientCreditsError
from courseforge.models import CreditAccount, JobType
from courseforge.schemas.jobs import EnhancementConfig, FactCheckConfig
from courseforge.services.credit_service import CreditLedger, cost_for


class TestAccounts:

    def test_first_lookup_grants_initial_credits(self, db):
        ledger = CreditLedger(db, initial_credits=25)
        assert ledger.get_balance("bob") == 25

    def test_default_grant_comes_from_settings(self, db):
        assert CreditLedger(db).get_balance("carol") == 100

    def test_account_created_once(self, db):
        ledger = CreditLedger(db, initial_credits=25)
        first = ledger.ensure_account("bob")
        ledger.set_balance("bob", 7)
        second = ledger.ensure_account("bob")
        assert first.id == second.id
        assert second.credits_remaining == 7

    def test_concurrent_creator_wins(self, db):
        """Another session inserts the row between our lookup and our commit."""
        other = SessionLocal()
        real_find = CreditLedger._find
        lookups = []

        def racing_find(ledger, owner):
            lookups.append(owner)
            if len(lookups) == 1:
                other.add(CreditAccount(owner=owner, credits_remaining=40))
                other.commit()
                return None
            return real_find(ledger, owner)

        try:
            with patch.object(CreditLedger, "_find", racing_find):
                account = CreditLedger(db, initial_credits=25).ensure_account("bob")
        finally:
            other.close()

        assert account.credits_remaining == 40
        assert db.query(CreditAccount).filter(CreditAccount.owner == "bob").count() == 1


class TestRequireBalance:

    def test_passes_when_affordable(self, db):
        ledger = CreditLedger(db, initial_credits=5)
        assert ledger.require_balance("bob", 5).credits_remaining == 5

    def test_reports_required_and_available(self, db):
        ledger = CreditLedger(db, initial_credits=2)
        with pytest.raises(InsufficientCreditsError) as exc_info:
            ledger.require_balance("bob", 5)
        assert exc_info.value.status_code == 402
        assert exc_info.value.details == {"required": 5, "available": 2}

    def test_does_not_debit(self, db):
        ledger = CreditLedger(db, initial_credits=10)
        ledger.require_balance("bob", 4)
        assert ledger.get_balance("bob") == 10


class TestDebit:

    def test_subtracts(self, db):
        ledger = CreditLedger(db, initial_credits=10)
        assert ledger.debit("bob", 4).credits_remaining == 6

    def test_clamps_at_zero(self, db):
        ledger = CreditLedger(db, initial_credits=3)
        assert ledger.debit("bob", 5).credits_remaining == 0

    def test_rejects_negative_amount(self, db):
        with pytest.raises(ValueError):
            CreditLedger(db).debit("bob", -1)

    def test_uncommitted_debit_rolls_back(self, db):
        ledger = CreditLedger(db, initial_credits=10)
        ledger.ensure_account("bob")
        ledger.debit("bob", 4, commit=False)
        db.rollback()
        assert ledger.get_balance("bob") == 10

    def test_concurrent_debits_are_not_lost(self, db):
        CreditLedger(db, initial_credits=100).ensure_account("bob")
        workers = 10
        start = threading.Barrier(workers, timeout=10)
        errors = []

        def debit_three():
            session = SessionLocal()
            try:
                start.wait()
                CreditLedger(session).debit("bob", 3)
            except Exception as e:  # noqa: BLE001
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=debit_three) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        db.expire_all()
        assert CreditLedger(db).get_balance("bob") == 70

    def test_grant_adds(self, db):
        ledger = CreditLedger(db, initial_credits=10)
        assert ledger.grant("bob", 5).credits_remaining == 15


class TestCostFor:

    def test_fixed_prices(self):
        assert cost_for(JobType.OUTLINE) == 5
        assert cost_for(JobType.SCRIPT) == 4
        assert cost_for(JobType.CONTENT_VARIATION) == 4
        assert cost_for(JobType.BATCH_MEMBER) == 3
        assert cost_for(JobType.OPTIMIZATION) == 2

    def test_humanize_is_cheaper(self):
        assert cost_for(JobType.ENHANCEMENT, EnhancementConfig(mode="humanize", content="x")) == 2
        assert cost_for(JobType.ENHANCEMENT, EnhancementConfig(mode="research", content="x")) == 3

    def test_fact_check_priced_by_depth(self):
        assert cost_for(JobType.FACT_CHECK, FactCheckConfig(content="x", depth="basic")) == 1
        assert cost_for(JobType.FACT_CHECK, FactCheckConfig(content="x", depth="comprehensive")) == 3

    def test_accepts_string_job_type(self):
        assert cost_for("outline") == 5
