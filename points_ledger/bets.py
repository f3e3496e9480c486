"""
Bet report lifecycle: pending -> approved | rejected.

A report's point delta is applied exactly once, in the same transaction that
flips it from pending to approved. Both transitions are terminal.
"""

from decimal import Decimal
from typing import Callable, Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .book import LedgerBook
from .directory import load_user
from .errors import NotFoundError, ValidationError
from .models import BetApprovalResult, BetReport, BetStatus, EntryType, LedgerEntry, SubmitBetRequest
from .money import CENT, as_naive_utc, from_cents, to_cents, utcnow
from .schema import BetRow
from .store import LedgerStore

DeltaPolicy = Callable[[BetRow], int]


def net_outcome_delta(bet: BetRow) -> int:
    """Win minus loss, in cents. Missing amounts count as zero."""
    return (bet.win_cents or 0) - (bet.loss_cents or 0)


def _required_text(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _non_negative_cents(amount: Optional[Decimal], field: str) -> Optional[int]:
    if amount is None:
        return None
    cents = to_cents(amount, field)
    if cents < 0:
        raise ValidationError(f"{field} must not be negative")
    return cents


class BetApprovalEngine:
    def __init__(self, store: LedgerStore, book: LedgerBook, delta_policy: DeltaPolicy = net_outcome_delta):
        self.store = store
        self.book = book
        self.delta_policy = delta_policy

    def submit(self, request: SubmitBetRequest) -> BetReport:
        platform = _required_text(request.platform, "platform")
        game = _required_text(request.game, "game")
        bet_type = _required_text(request.bet_type, "bet_type")
        stake_cents = _non_negative_cents(request.stake, "stake")
        win_cents = _non_negative_cents(request.win_amount, "win_amount")
        loss_cents = _non_negative_cents(request.loss_amount, "loss_amount")

        start_time = as_naive_utc(request.start_time)
        end_time = as_naive_utc(request.end_time)
        if start_time >= end_time:
            raise ValidationError("start_time must be before end_time")

        duration_seconds = int((end_time - start_time).total_seconds())
        if request.duration_minutes is not None:
            expected = (Decimal(duration_seconds) / 60).quantize(CENT)
            if Decimal(str(request.duration_minutes)).quantize(CENT) != expected:
                raise ValidationError(
                    f"duration_minutes {request.duration_minutes} does not match session length {expected}"
                )

        with self.store.transaction() as session:
            load_user(session, request.user_id)
            bet = BetRow(
                user_id=request.user_id,
                platform=platform,
                game=game,
                stake_cents=stake_cents,
                win_cents=win_cents,
                loss_cents=loss_cents,
                start_time=start_time,
                end_time=end_time,
                duration_seconds=duration_seconds,
                proof_image=request.proof_image,
                bet_type=bet_type,
                status=BetStatus.PENDING.value,
            )
            session.add(bet)
            session.flush()
            logger.info(f"Bet report {bet.id} submitted by user {bet.user_id} ({platform}/{game})")
            return BetReport.from_row(bet)

    def list_pending(self) -> list[BetReport]:
        with self.store.transaction() as session:
            rows = session.execute(
                select(BetRow)
                .where(BetRow.status == BetStatus.PENDING.value)
                .order_by(BetRow.created_at.desc(), BetRow.id.desc())
            ).scalars().all()
            return [BetReport.from_row(row) for row in rows]

    def list_for_user(self, user_id: int) -> list[BetReport]:
        with self.store.transaction() as session:
            load_user(session, user_id)
            rows = session.execute(
                select(BetRow)
                .where(BetRow.user_id == user_id)
                .order_by(BetRow.created_at.desc(), BetRow.id.desc())
            ).scalars().all()
            return [BetReport.from_row(row) for row in rows]

    def get(self, report_id: int) -> BetReport:
        with self.store.transaction() as session:
            bet = session.get(BetRow, report_id)
            if bet is None:
                raise NotFoundError(f"Bet report {report_id} not found")
            return BetReport.from_row(bet)

    def approve(self, report_id: int, admin_id: int) -> BetApprovalResult:
        now = utcnow()
        with self.store.transaction() as session:
            # Conditional flip: a second approval matches no row and credits nothing
            try:
                result = session.execute(
                    update(BetRow)
                    .where(BetRow.id == report_id, BetRow.status == BetStatus.PENDING.value)
                    .values(status=BetStatus.APPROVED.value, approved_by=admin_id, approved_at=now)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError:
                raise NotFoundError(f"Approver {admin_id} not found")
            if result.rowcount == 0:
                raise NotFoundError(f"Pending bet report {report_id} not found")

            load_user(session, admin_id)
            bet = session.execute(select(BetRow).where(BetRow.id == report_id)).scalar_one()
            delta_cents = self.delta_policy(bet)

            entry = self.book.apply(
                session,
                bet.user_id,
                delta_cents,
                EntryType.BET_APPROVAL,
                f"Approved bet report {bet.id} ({bet.platform}/{bet.game})",
                reference=f"bet:{bet.id}",
            )
            logger.info(f"Bet report {report_id} approved by user {admin_id}, delta {from_cents(delta_cents)}")
            return BetApprovalResult(
                bet=BetReport.from_row(bet),
                ledger_entry=LedgerEntry.from_row(entry),
                message="Bet report approved",
            )

    def reject(self, report_id: int, reason: Optional[str] = None) -> BetReport:
        with self.store.transaction() as session:
            result = session.execute(
                update(BetRow)
                .where(BetRow.id == report_id, BetRow.status == BetStatus.PENDING.value)
                .values(status=BetStatus.REJECTED.value, rejected_at=utcnow(), rejection_reason=reason)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Pending bet report {report_id} not found")

            bet = session.execute(select(BetRow).where(BetRow.id == report_id)).scalar_one()
            logger.info(f"Bet report {report_id} rejected")
            return BetReport.from_row(bet)
