"""
Balance primitive and read projections of the points ledger.

Every balance change in the system goes through ``LedgerBook.apply``: one
UPDATE that increments the balance in SQL, a read-back of the new balance and
a journal row, all inside the caller's transaction.
"""

from decimal import Decimal
from typing import Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .errors import InsufficientBalanceError, NotFoundError
from .models import EntryType, LedgerEntry, LedgerHistoryResponse, UserBalance
from .money import from_cents, to_cents
from .schema import LedgerEntryRow, UserRow
from .store import LedgerStore


class LedgerBook:
    def __init__(self, store: LedgerStore):
        self.store = store

    def apply(
        self,
        session: Session,
        user_id: int,
        delta_cents: int,
        entry_type: EntryType,
        description: str,
        reference: Optional[str] = None,
        require_funds: bool = False,
    ) -> LedgerEntryRow:
        """
        Increment a user's balance by ``delta_cents`` and journal it.

        With ``require_funds`` the update only matches while the resulting
        balance stays non-negative.
        """
        stmt = (
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(balance_cents=UserRow.balance_cents + delta_cents)
            .execution_options(synchronize_session=False)
        )
        if require_funds:
            stmt = stmt.where(UserRow.balance_cents + delta_cents >= 0)

        result = session.execute(stmt)
        if result.rowcount == 0:
            exists = session.execute(select(UserRow.id).where(UserRow.id == user_id)).scalar_one_or_none()
            if exists is None:
                raise NotFoundError(f"User {user_id} not found")
            raise InsufficientBalanceError(
                f"User {user_id} cannot cover {from_cents(-delta_cents)} points"
            )

        balance_after = session.execute(
            select(UserRow.balance_cents).where(UserRow.id == user_id)
        ).scalar_one()

        entry = LedgerEntryRow(
            user_id=user_id,
            entry_type=entry_type.value,
            amount_cents=delta_cents,
            balance_after_cents=balance_after,
            reference=reference,
            description=description,
        )
        session.add(entry)
        session.flush()

        logger.info(
            f"Balance change for user {user_id}: {from_cents(delta_cents)} "
            f"({entry_type.value}, balance: {from_cents(balance_after)})"
        )
        return entry

    def adjust_balance(
        self,
        user_id: int,
        delta: Decimal,
        entry_type: EntryType = EntryType.ADJUSTMENT,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> LedgerEntry:
        delta_cents = to_cents(delta, "delta")
        with self.store.transaction() as session:
            entry = self.apply(
                session,
                user_id,
                delta_cents,
                entry_type,
                description or f"Manual adjustment of {from_cents(delta_cents)} points",
                reference,
            )
            return LedgerEntry.from_row(entry)

    def get_balance(self, user_id: int) -> UserBalance:
        with self.store.transaction() as session:
            user = session.get(UserRow, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")

            total_entries, last_at = session.execute(
                select(func.count(LedgerEntryRow.id), func.max(LedgerEntryRow.created_at))
                .where(LedgerEntryRow.user_id == user_id)
            ).one()

            return UserBalance(
                user_id=user.id,
                external_id=user.external_id,
                current_balance=from_cents(user.balance_cents),
                total_entries=total_entries,
                last_transaction_at=last_at,
            )

    def get_history(self, user_id: int, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        with self.store.transaction() as session:
            user = session.get(UserRow, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")

            total_count = session.execute(
                select(func.count(LedgerEntryRow.id)).where(LedgerEntryRow.user_id == user_id)
            ).scalar_one()

            rows = session.execute(
                select(LedgerEntryRow)
                .where(LedgerEntryRow.user_id == user_id)
                .order_by(LedgerEntryRow.created_at.desc(), LedgerEntryRow.id.desc())
                .limit(limit)
                .offset(offset)
            ).scalars().all()

            return LedgerHistoryResponse(
                user_id=user_id,
                entries=[LedgerEntry.from_row(row) for row in rows],
                total_count=total_count,
                current_balance=from_cents(user.balance_cents),
            )
