"""
Unit Tests for the Bet Approval Engine

Tests cover:
1. Submission validation
2. Approval credits exactly once
3. Rejection never touches balances
4. Pending queue ordering
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event, update
from sqlalchemy.exc import OperationalError

from conftest import SESSION_START, bet_request
from points_ledger.errors import NotFoundError, StorageError, ValidationError
from points_ledger.models import BetStatus, EntryType, RegisterUserRequest
from points_ledger.schema import BetRow, LedgerEntryRow
from points_ledger.service import LedgerService
from points_ledger.store import LedgerStore


class TestSubmitBet:
    """Tests for bet report submission."""

    def test_submit_creates_pending_report(self, service, make_user):
        """A submitted report is pending and has no balance effect."""
        user = make_user(balance="100.00")

        bet = service.submit_bet(bet_request(user.id))

        assert bet.status == BetStatus.PENDING
        assert bet.stake == Decimal("20.00")
        assert bet.win_amount == Decimal("50.00")
        assert bet.approved_by is None
        assert service.get_balance(user.id).current_balance == Decimal("100.00")

    def test_duration_is_derived_from_session(self, service, make_user):
        """Test that duration is derived from start and end."""
        user = make_user()

        bet = service.submit_bet(bet_request(user.id, end_time=SESSION_START + timedelta(minutes=45)))

        assert bet.duration_minutes == Decimal("45.00")

    def test_consistent_duration_is_accepted(self, service, make_user):
        """Test that a matching explicit duration is kept."""
        user = make_user()

        bet = service.submit_bet(bet_request(user.id, duration_minutes=Decimal("30")))

        assert bet.duration_minutes == Decimal("30.00")

    def test_inconsistent_duration_is_rejected(self, service, make_user):
        """Test that a duration contradicting the session is rejected."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, duration_minutes=Decimal("90")))

    def test_start_must_precede_end(self, service, make_user):
        """Test empty and inverted sessions."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, end_time=SESSION_START))

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, end_time=SESSION_START - timedelta(minutes=5)))

    def test_negative_amounts_are_rejected(self, service, make_user):
        """Test negative stake and loss."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, stake=Decimal("-1.00")))

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, loss_amount=Decimal("-5.00")))

    def test_sub_cent_amounts_are_rejected(self, service, make_user):
        """Test amounts finer than a cent."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, stake=Decimal("1.005")))

    def test_blank_platform_and_game_are_rejected(self, service, make_user):
        """Test required text fields."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, platform="  "))

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, game=""))

    def test_out_of_range_amounts_are_rejected(self, service, make_user):
        """Test amounts too large to store."""
        user = make_user()

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, stake=Decimal("1e20")))

        with pytest.raises(ValidationError):
            service.submit_bet(bet_request(user.id, win_amount=Decimal("1e15")))

        assert service.list_user_bets(user.id) == []

    def test_zero_stake_is_allowed(self, service, make_user):
        """Test a free session."""
        user = make_user()

        bet = service.submit_bet(bet_request(user.id, stake=Decimal("0")))

        assert bet.stake == Decimal("0.00")

    def test_unknown_owner_fails(self, service):
        """Test a report for a missing user."""
        with pytest.raises(NotFoundError):
            service.submit_bet(bet_request(9999))

    def test_aware_timestamps_are_normalized_to_utc(self, service, make_user):
        """Test that offset-aware timestamps are stored as UTC."""
        user = make_user()
        start = SESSION_START.replace(tzinfo=timezone(timedelta(hours=-3)))

        bet = service.submit_bet(bet_request(
            user.id,
            start_time=start,
            end_time=start + timedelta(minutes=10),
        ))

        assert bet.start_time == SESSION_START + timedelta(hours=3)
        assert bet.duration_minutes == Decimal("10.00")


class TestApproveBet:
    """Tests for the approval flow."""

    def test_approval_credits_net_outcome(self, service, make_user, admin):
        """Balance 100.00, win 50 / loss 0 -> 150.00 after approval."""
        user = make_user(balance="100.00")
        bet = service.submit_bet(bet_request(user.id))

        result = service.approve_bet(bet.id, admin.id)

        assert result.bet.status == BetStatus.APPROVED
        assert result.bet.approved_by == admin.id
        assert result.bet.approved_at is not None
        assert result.ledger_entry.entry_type == EntryType.BET_APPROVAL
        assert result.ledger_entry.amount == Decimal("50.00")
        assert result.ledger_entry.balance_after == Decimal("150.00")
        assert service.get_balance(user.id).current_balance == Decimal("150.00")

    def test_double_approval_credits_once(self, service, make_user, admin):
        """Test that a second approval credits nothing."""
        user = make_user(balance="100.00")
        bet = service.submit_bet(bet_request(user.id))
        service.approve_bet(bet.id, admin.id)

        with pytest.raises(NotFoundError):
            service.approve_bet(bet.id, admin.id)

        assert service.get_balance(user.id).current_balance == Decimal("150.00")
        assert service.get_history(user.id).total_count == 2  # opening balance + one approval

    def test_losing_session_debits(self, service, make_user, admin):
        """Test that a loss reduces the balance."""
        user = make_user(balance="100.00")
        bet = service.submit_bet(bet_request(user.id, win_amount=None, loss_amount=Decimal("30.00")))

        service.approve_bet(bet.id, admin.id)

        assert service.get_balance(user.id).current_balance == Decimal("70.00")

    def test_custom_delta_policy(self, store, make_user, admin):
        """The delta formula is pluggable; it is still applied exactly once."""
        flat = LedgerService(store, delta_policy=lambda bet: 1000)
        user = make_user()
        bet = flat.submit_bet(bet_request(user.id))

        flat.approve_bet(bet.id, admin.id)

        assert flat.get_balance(user.id).current_balance == Decimal("10.00")

    def test_unknown_report_fails(self, service, admin):
        """Test an unknown report id."""
        with pytest.raises(NotFoundError):
            service.approve_bet(424242, admin.id)

    def test_unknown_approver_rolls_back(self, service, make_user):
        """A failed approval leaves the report pending and the balance untouched."""
        user = make_user(balance="5.00")
        bet = service.submit_bet(bet_request(user.id))

        with pytest.raises(NotFoundError):
            service.approve_bet(bet.id, 777777)

        assert service.get_bet(bet.id).status == BetStatus.PENDING
        assert service.get_balance(user.id).current_balance == Decimal("5.00")

    def test_failed_journal_write_leaves_report_pending(self, service, make_user, admin):
        """If the store fails mid-approval, the report stays pending and no points move."""
        user = make_user(balance="100.00")
        bet = service.submit_bet(bet_request(user.id))

        def fail_insert(mapper, connection, target):
            raise OperationalError("INSERT INTO ledger_entries", {}, Exception("disk I/O error"))

        event.listen(LedgerEntryRow, "before_insert", fail_insert)
        try:
            with pytest.raises(StorageError):
                service.approve_bet(bet.id, admin.id)
        finally:
            event.remove(LedgerEntryRow, "before_insert", fail_insert)

        assert service.get_bet(bet.id).status == BetStatus.PENDING
        assert service.get_bet(bet.id).approved_by is None
        assert service.get_balance(user.id).current_balance == Decimal("100.00")
        assert service.get_history(user.id).total_count == 1

        service.approve_bet(bet.id, admin.id)

        assert service.get_balance(user.id).current_balance == Decimal("150.00")

    def test_rejected_report_cannot_be_approved(self, service, make_user, admin):
        """Test that rejection is terminal."""
        user = make_user()
        bet = service.submit_bet(bet_request(user.id))
        service.reject_bet(bet.id)

        with pytest.raises(NotFoundError):
            service.approve_bet(bet.id, admin.id)

        assert service.get_balance(user.id).current_balance == Decimal("0.00")


class TestRejectBet:
    """Tests for the rejection flow."""

    def test_rejection_is_balance_neutral(self, service, make_user):
        """Test that rejecting leaves the balance alone."""
        user = make_user(balance="42.00")
        bet = service.submit_bet(bet_request(user.id))

        rejected = service.reject_bet(bet.id, reason="Proof image unreadable")

        assert rejected.status == BetStatus.REJECTED
        assert rejected.rejection_reason == "Proof image unreadable"
        assert rejected.rejected_at is not None
        assert service.get_balance(user.id).current_balance == Decimal("42.00")
        assert service.list_pending_bets() == []

    def test_cannot_reject_twice(self, service, make_user):
        """Test a repeated rejection."""
        user = make_user()
        bet = service.submit_bet(bet_request(user.id))
        service.reject_bet(bet.id)

        with pytest.raises(NotFoundError):
            service.reject_bet(bet.id)

    def test_approved_report_is_immutable(self, service, make_user, admin):
        """Test that approval is terminal."""
        user = make_user()
        bet = service.submit_bet(bet_request(user.id))
        service.approve_bet(bet.id, admin.id)

        with pytest.raises(NotFoundError):
            service.reject_bet(bet.id)

        assert service.get_bet(bet.id).status == BetStatus.APPROVED
        assert service.get_balance(user.id).current_balance == Decimal("50.00")

    def test_unknown_report_fails(self, service):
        """Test an unknown report id."""
        with pytest.raises(NotFoundError):
            service.reject_bet(31337)


class TestPendingQueue:
    """Tests for the admin review queue."""

    def test_pending_newest_first(self, service, store, make_user, admin):
        """Test queue order and exclusion of decided reports."""
        user = make_user()
        first = service.submit_bet(bet_request(user.id, game="Mines"))
        second = service.submit_bet(bet_request(user.id, game="Double"))
        third = service.submit_bet(bet_request(user.id, game="Crash"))
        service.approve_bet(second.id, admin.id)

        with store.transaction() as session:
            session.execute(update(BetRow).where(BetRow.id == first.id).values(created_at=SESSION_START))
            session.execute(update(BetRow).where(BetRow.id == third.id).values(created_at=SESSION_START + timedelta(hours=1)))

        pending = service.list_pending_bets()

        assert [bet.id for bet in pending] == [third.id, first.id]

    def test_ties_break_on_id(self, service, store, make_user):
        """Test ordering of reports created at the same instant."""
        user = make_user()
        bets = [service.submit_bet(bet_request(user.id)) for _ in range(3)]

        with store.transaction() as session:
            session.execute(update(BetRow).values(created_at=SESSION_START))

        pending = service.list_pending_bets()

        assert [bet.id for bet in pending] == sorted((bet.id for bet in bets), reverse=True)

    def test_user_history_lists_all_states(self, service, make_user, admin):
        """Test that user history includes every status."""
        user = make_user()
        other = make_user()
        approved = service.submit_bet(bet_request(user.id))
        rejected = service.submit_bet(bet_request(user.id))
        service.submit_bet(bet_request(user.id))
        service.submit_bet(bet_request(other.id))
        service.approve_bet(approved.id, admin.id)
        service.reject_bet(rejected.id)

        history = service.list_user_bets(user.id)

        assert len(history) == 3
        assert {bet.status for bet in history} == {BetStatus.PENDING, BetStatus.APPROVED, BetStatus.REJECTED}


class TestConcurrentApproval:
    """Approval under real concurrency against a file-backed database."""

    def test_single_credit(self, tmp_path):
        """Test that racing approvals of one report credit it exactly once."""
        store = LedgerStore(f"sqlite:///{tmp_path / 'ledger.db'}")
        store.create_schema()
        service = LedgerService(store)
        try:
            owner = service.register_user(RegisterUserRequest(external_id=6000, first_name="Owner"))
            admins = [
                service.register_user(RegisterUserRequest(external_id=6100 + i, first_name=f"Admin {i}", is_admin=True))
                for i in range(8)
            ]
            bet = service.submit_bet(bet_request(owner.id))
            barrier = threading.Barrier(len(admins))

            def attempt(admin):
                barrier.wait()
                try:
                    return service.approve_bet(bet.id, admin.id)
                except NotFoundError:
                    return None

            with ThreadPoolExecutor(max_workers=len(admins)) as pool:
                results = list(pool.map(attempt, admins))

            winners = [result for result in results if result is not None]

            assert len(winners) == 1
            assert service.get_bet(bet.id).approved_by == winners[0].bet.approved_by
            assert service.get_balance(owner.id).current_balance == Decimal("50.00")
            assert service.get_history(owner.id).total_count == 1
        finally:
            store.dispose()
