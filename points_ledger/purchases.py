"""
Point debits for individual and group analysis.

With overdraft allowed the debit is unconditional and a balance may go below
zero. With overdraft disabled the debit only applies while the balance covers
the cost, otherwise InsufficientBalanceError is raised and nothing changes.
"""

from decimal import Decimal
from typing import Optional

from loguru import logger

from .book import LedgerBook
from .catalog import AnalysisPeriodCatalog
from .config import ALLOW_OVERDRAFT, GROUP_ANALYSIS_COST, INDIVIDUAL_ANALYSIS_COST
from .errors import ValidationError
from .models import AnalysisProduct, EntryType, LedgerEntry, PurchaseResult
from .money import from_cents, scale_cents, to_cents
from .store import LedgerStore

_ENTRY_TYPES = {
    AnalysisProduct.INDIVIDUAL: EntryType.ANALYSIS_PURCHASE,
    AnalysisProduct.GROUP: EntryType.GROUP_ANALYSIS_PURCHASE,
}


class PurchaseEngine:
    def __init__(
        self,
        store: LedgerStore,
        book: LedgerBook,
        individual_cost: Optional[Decimal] = None,
        group_cost: Optional[Decimal] = None,
        allow_overdraft: Optional[bool] = None,
    ):
        self.store = store
        self.book = book
        self.costs = {
            AnalysisProduct.INDIVIDUAL: to_cents(
                INDIVIDUAL_ANALYSIS_COST if individual_cost is None else individual_cost, "individual_cost"
            ),
            AnalysisProduct.GROUP: to_cents(
                GROUP_ANALYSIS_COST if group_cost is None else group_cost, "group_cost"
            ),
        }
        if any(cost < 0 for cost in self.costs.values()):
            raise ValidationError("Analysis costs must not be negative")
        self.allow_overdraft = ALLOW_OVERDRAFT if allow_overdraft is None else allow_overdraft

    def purchase_individual_analysis(self, user_id: int, period_id: Optional[int] = None) -> PurchaseResult:
        return self._purchase(AnalysisProduct.INDIVIDUAL, user_id, period_id)

    def purchase_group_analysis(self, user_id: int, period_id: Optional[int] = None) -> PurchaseResult:
        return self._purchase(AnalysisProduct.GROUP, user_id, period_id)

    def _purchase(self, product: AnalysisProduct, user_id: int, period_id: Optional[int]) -> PurchaseResult:
        with self.store.transaction() as session:
            cost_cents = self.costs[product]
            description = f"{product.value.capitalize()} analysis"
            if period_id is not None:
                period = AnalysisPeriodCatalog.load_active(session, period_id)
                cost_cents = scale_cents(cost_cents, Decimal(str(period.cost_multiplier)))
                description = f"{description} ({period.period_minutes} min)"

            entry = self.book.apply(
                session,
                user_id,
                -cost_cents,
                _ENTRY_TYPES[product],
                description,
                reference=f"analysis:{product.value}" + (f":{period_id}" if period_id is not None else ""),
                require_funds=not self.allow_overdraft,
            )
            if entry.balance_after_cents < 0:
                logger.warning(f"User {user_id} overdrawn to {from_cents(entry.balance_after_cents)} by {product.value} analysis")

            return PurchaseResult(
                success=True,
                product=product,
                cost=from_cents(cost_cents),
                balance=from_cents(entry.balance_after_cents),
                ledger_entry=LedgerEntry.from_row(entry),
            )
