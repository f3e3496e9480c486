"""
Single-use reward codes.

Redemption flips ``is_used`` with a conditional UPDATE, binds the owner and
credits the balance in one transaction, so of any number of concurrent
attempts on a code exactly one can win.
"""

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .book import LedgerBook
from .errors import ConflictError, NotFoundError, RedemptionError, RedemptionFailure, ValidationError
from .models import CreateRewardCodeRequest, EntryType, LedgerEntry, RedemptionResult, RewardCode
from .money import as_naive_utc, from_cents, to_cents, utcnow
from .schema import RewardCodeRow
from .store import LedgerStore


class RewardRedemptionEngine:
    def __init__(self, store: LedgerStore, book: LedgerBook):
        self.store = store
        self.book = book

    def create(self, request: CreateRewardCodeRequest) -> RewardCode:
        code = (request.code or "").strip()
        if not code:
            raise ValidationError("code is required")
        value_cents = to_cents(request.value, "value")
        if value_cents <= 0:
            raise ValidationError("value must be positive")

        with self.store.transaction() as session:
            row = RewardCodeRow(
                code=code,
                value_cents=value_cents,
                reason=request.reason,
                expires_at=as_naive_utc(request.expires_at),
                is_used=False,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError:
                raise ConflictError(f"Reward code {code!r} already exists")
            logger.info(f"Reward code {code!r} created worth {from_cents(value_cents)} points")
            return RewardCode.from_row(row)

    def get(self, code: str) -> RewardCode:
        with self.store.transaction() as session:
            row = self._find(session, code)
            if row is None:
                raise NotFoundError(f"Reward code {code!r} not found")
            return RewardCode.from_row(row)

    def list_active(self) -> list[RewardCode]:
        now = utcnow()
        with self.store.transaction() as session:
            rows = session.execute(
                select(RewardCodeRow)
                .where(
                    RewardCodeRow.is_used.is_(False),
                    or_(RewardCodeRow.expires_at.is_(None), RewardCodeRow.expires_at > now),
                )
                .order_by(RewardCodeRow.created_at.desc(), RewardCodeRow.id.desc())
            ).scalars().all()
            return [RewardCode.from_row(row) for row in rows]

    def redeem(self, code: str, user_id: int) -> RedemptionResult:
        """
        Consume ``code`` for ``user_id``.

        Unusable codes are a routine outcome and come back as
        ``success=False``. An unknown user raises NotFoundError and leaves the
        code untouched.
        """
        code = (code or "").strip()
        try:
            entry = self._consume(code, user_id)
        except RedemptionError as e:
            logger.info(f"Redemption of {code!r} by user {user_id} refused: {e.reason.value}")
            return RedemptionResult(success=False, code=code, reason=e.reason, message=str(e))

        return RedemptionResult(
            success=True,
            code=code,
            ledger_entry=entry,
            message=f"Redeemed {entry.amount} points",
        )

    def _consume(self, code: str, user_id: int) -> LedgerEntry:
        now = utcnow()
        with self.store.transaction() as session:
            try:
                result = session.execute(
                    update(RewardCodeRow)
                    .where(
                        RewardCodeRow.code == code,
                        RewardCodeRow.is_used.is_(False),
                        or_(RewardCodeRow.expires_at.is_(None), RewardCodeRow.expires_at > now),
                    )
                    .values(is_used=True, owner_id=user_id, redeemed_at=now)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError:
                raise NotFoundError(f"User {user_id} not found")

            row = self._find(session, code)
            if result.rowcount == 0:
                raise RedemptionError(code, self._failure_reason(row))

            entry = self.book.apply(
                session,
                user_id,
                row.value_cents,
                EntryType.REWARD_REDEMPTION,
                f"Redeemed reward code {code}",
                reference=f"reward:{code}",
            )
            return LedgerEntry.from_row(entry)

    @staticmethod
    def _failure_reason(row) -> RedemptionFailure:
        if row is None:
            return RedemptionFailure.NOT_FOUND
        if row.is_used:
            return RedemptionFailure.ALREADY_USED
        return RedemptionFailure.EXPIRED

    @staticmethod
    def _find(session: Session, code: str):
        return session.execute(
            select(RewardCodeRow).where(RewardCodeRow.code == code)
        ).scalar_one_or_none()
