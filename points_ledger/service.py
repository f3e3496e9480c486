from decimal import Decimal
from typing import Optional

from .bets import BetApprovalEngine, DeltaPolicy, net_outcome_delta
from .book import LedgerBook
from .catalog import AnalysisPeriodCatalog, SettingsRegistry
from .directory import UserDirectory
from .models import (
    AnalysisPeriod,
    BetApprovalResult,
    BetReport,
    CreateAnalysisPeriodRequest,
    CreateRewardCodeRequest,
    EntryType,
    LedgerEntry,
    LedgerHistoryResponse,
    PurchaseResult,
    RedemptionResult,
    RegisterUserRequest,
    RewardCode,
    SubmitBetRequest,
    SystemSetting,
    UpdateAnalysisPeriodRequest,
    User,
    UserBalance,
)
from .purchases import PurchaseEngine
from .rewards import RewardRedemptionEngine
from .store import LedgerStore


class LedgerService:
    """
    Single entry point to the points ledger.

    Every balance change runs as one store transaction and goes through
    ``LedgerBook.apply``, which increments the balance in SQL. Concurrent calls
    for the same user or the same reward code cannot lose updates, and calls
    for different users never wait on each other.
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        delta_policy: DeltaPolicy = net_outcome_delta,
        individual_cost: Optional[Decimal] = None,
        group_cost: Optional[Decimal] = None,
        allow_overdraft: Optional[bool] = None,
    ):
        self.store = store or LedgerStore()
        self.book = LedgerBook(self.store)
        self.users = UserDirectory(self.store)
        self.settings = SettingsRegistry(self.store)
        self.periods = AnalysisPeriodCatalog(self.store)
        self.bets = BetApprovalEngine(self.store, self.book, delta_policy)
        self.rewards = RewardRedemptionEngine(self.store, self.book)
        self.purchases = PurchaseEngine(
            self.store,
            self.book,
            individual_cost=individual_cost,
            group_cost=group_cost,
            allow_overdraft=allow_overdraft,
        )

    # Balance

    def adjust_balance(
        self,
        user_id: int,
        delta: Decimal,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> LedgerEntry:
        return self.book.adjust_balance(user_id, delta, EntryType.ADJUSTMENT, description, reference)

    def get_balance(self, user_id: int) -> UserBalance:
        return self.book.get_balance(user_id)

    def get_history(self, user_id: int, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.book.get_history(user_id, limit, offset)

    # Users

    def register_user(self, request: RegisterUserRequest) -> User:
        return self.users.register(request)

    def get_user(self, user_id: int) -> User:
        return self.users.get(user_id)

    def get_user_by_external_id(self, external_id: int) -> User:
        return self.users.get_by_external_id(external_id)

    def set_banned(self, external_id: int, banned: bool) -> User:
        return self.users.set_banned(external_id, banned)

    def promote_user(self, external_id: int) -> User:
        return self.users.promote(external_id)

    # Bets

    def submit_bet(self, request: SubmitBetRequest) -> BetReport:
        return self.bets.submit(request)

    def list_pending_bets(self) -> list[BetReport]:
        return self.bets.list_pending()

    def list_user_bets(self, user_id: int) -> list[BetReport]:
        return self.bets.list_for_user(user_id)

    def get_bet(self, report_id: int) -> BetReport:
        return self.bets.get(report_id)

    def approve_bet(self, report_id: int, admin_id: int) -> BetApprovalResult:
        return self.bets.approve(report_id, admin_id)

    def reject_bet(self, report_id: int, reason: Optional[str] = None) -> BetReport:
        return self.bets.reject(report_id, reason)

    # Reward codes

    def create_reward_code(self, request: CreateRewardCodeRequest) -> RewardCode:
        return self.rewards.create(request)

    def get_reward_code(self, code: str) -> RewardCode:
        return self.rewards.get(code)

    def redeem_reward_code(self, code: str, user_id: int) -> RedemptionResult:
        return self.rewards.redeem(code, user_id)

    def list_active_reward_codes(self) -> list[RewardCode]:
        return self.rewards.list_active()

    # Purchases

    def purchase_individual_analysis(self, user_id: int, period_id: Optional[int] = None) -> PurchaseResult:
        return self.purchases.purchase_individual_analysis(user_id, period_id)

    def purchase_group_analysis(self, user_id: int, period_id: Optional[int] = None) -> PurchaseResult:
        return self.purchases.purchase_group_analysis(user_id, period_id)

    # Settings and analysis periods

    def get_setting(self, key: str) -> Optional[SystemSetting]:
        return self.settings.get(key)

    def set_setting(self, key: str, value: str) -> SystemSetting:
        return self.settings.set(key, value)

    def list_settings(self) -> list[SystemSetting]:
        return self.settings.list_all()

    def get_bot_logo(self) -> Optional[str]:
        return self.settings.get_bot_logo()

    def update_bot_logo(self, logo_url: str) -> SystemSetting:
        return self.settings.update_bot_logo(logo_url)

    def list_analysis_periods(self) -> list[AnalysisPeriod]:
        return self.periods.list_active()

    def create_analysis_period(self, request: CreateAnalysisPeriodRequest) -> AnalysisPeriod:
        return self.periods.create(request)

    def update_analysis_period(self, period_id: int, request: UpdateAnalysisPeriodRequest) -> AnalysisPeriod:
        return self.periods.update(period_id, request)

    def deactivate_analysis_period(self, period_id: int) -> AnalysisPeriod:
        return self.periods.deactivate(period_id)
