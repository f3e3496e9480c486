from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import RedemptionFailure
from .money import CENT, from_cents
from .schema import AnalysisPeriodRow, BetRow, LedgerEntryRow, RewardCodeRow, SystemSettingRow, UserRow


class EntryType(str, Enum):
    BET_APPROVAL = "BET_APPROVAL"
    REWARD_REDEMPTION = "REWARD_REDEMPTION"
    ANALYSIS_PURCHASE = "ANALYSIS_PURCHASE"
    GROUP_ANALYSIS_PURCHASE = "GROUP_ANALYSIS_PURCHASE"
    ADJUSTMENT = "ADJUSTMENT"


class BetStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AnalysisProduct(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


# Requests

class RegisterUserRequest(BaseModel):
    external_id: int = Field(..., description="Platform (Telegram) user id")
    first_name: str
    username: Optional[str] = None
    last_name: Optional[str] = None
    affiliate_code: Optional[str] = None
    referred_by: Optional[int] = Field(default=None, description="External id of the referrer")
    is_admin: bool = False


class BetDetails(BaseModel):
    platform: str
    game: str
    stake: Decimal
    win_amount: Optional[Decimal] = None
    loss_amount: Optional[Decimal] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: Optional[Decimal] = Field(default=None, description="Derived from start/end when omitted")
    proof_image: Optional[str] = None
    bet_type: str


class SubmitBetRequest(BetDetails):
    user_id: int


class ReportBetRequest(BetDetails):
    """Bet report as sent by the bot, keyed by the platform user id."""

    external_id: int

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "external_id": 123456789,
            "platform": "Blaze",
            "game": "Crash",
            "stake": "20.00",
            "win_amount": "50.00",
            "loss_amount": "0.00",
            "start_time": "2024-05-01T18:00:00Z",
            "end_time": "2024-05-01T18:30:00Z",
            "bet_type": "session",
        }
    })


class RejectBetRequest(BaseModel):
    reason: Optional[str] = None


class CreateRewardCodeRequest(BaseModel):
    code: str
    value: Decimal = Field(..., description="Points credited on redemption")
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


class RedeemRewardRequest(BaseModel):
    code: str
    external_id: int


class AnalysisPurchaseRequest(BaseModel):
    external_id: int
    period_id: Optional[int] = Field(default=None, description="Analysis period whose multiplier prices the purchase")


class PromoteUserRequest(BaseModel):
    external_id: int


class SettingUpdateRequest(BaseModel):
    key: str
    value: str


class BotLogoRequest(BaseModel):
    logo_url: str


class CreateAnalysisPeriodRequest(BaseModel):
    period_minutes: int
    cost_multiplier: Decimal
    is_active: bool = True


class UpdateAnalysisPeriodRequest(BaseModel):
    period_minutes: Optional[int] = None
    cost_multiplier: Optional[Decimal] = None
    is_active: Optional[bool] = None


# Views

class User(BaseModel):
    id: int
    external_id: int
    username: Optional[str] = None
    first_name: str
    last_name: Optional[str] = None
    balance: Decimal
    affiliate_code: str
    referred_by: Optional[int] = None
    is_banned: bool
    is_admin: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: UserRow) -> "User":
        return cls(
            id=row.id,
            external_id=row.external_id,
            username=row.username,
            first_name=row.first_name,
            last_name=row.last_name,
            balance=from_cents(row.balance_cents),
            affiliate_code=row.affiliate_code,
            referred_by=row.referred_by,
            is_banned=row.is_banned,
            is_admin=row.is_admin,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class BetReport(BaseModel):
    id: int
    user_id: int
    platform: str
    game: str
    stake: Decimal
    win_amount: Optional[Decimal] = None
    loss_amount: Optional[Decimal] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: Decimal
    proof_image: Optional[str] = None
    bet_type: str
    status: BetStatus
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_row(cls, row: BetRow) -> "BetReport":
        return cls(
            id=row.id,
            user_id=row.user_id,
            platform=row.platform,
            game=row.game,
            stake=from_cents(row.stake_cents),
            win_amount=from_cents(row.win_cents),
            loss_amount=from_cents(row.loss_cents),
            start_time=row.start_time,
            end_time=row.end_time,
            duration_minutes=(Decimal(row.duration_seconds) / 60).quantize(CENT),
            proof_image=row.proof_image,
            bet_type=row.bet_type,
            status=BetStatus(row.status),
            approved_by=row.approved_by,
            approved_at=row.approved_at,
            rejected_at=row.rejected_at,
            rejection_reason=row.rejection_reason,
            created_at=row.created_at,
        )

    def is_pending(self) -> bool:
        return self.status == BetStatus.PENDING


class RewardCode(BaseModel):
    id: int
    code: str
    value: Decimal
    owner_id: Optional[int] = None
    is_used: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    redeemed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: RewardCodeRow) -> "RewardCode":
        return cls(
            id=row.id,
            code=row.code,
            value=from_cents(row.value_cents),
            owner_id=row.owner_id,
            is_used=row.is_used,
            reason=row.reason,
            expires_at=row.expires_at,
            created_at=row.created_at,
            redeemed_at=row.redeemed_at,
        )


class LedgerEntry(BaseModel):
    id: int
    user_id: int
    entry_type: EntryType
    amount: Decimal
    balance_after: Decimal
    reference: Optional[str] = None
    description: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: LedgerEntryRow) -> "LedgerEntry":
        return cls(
            id=row.id,
            user_id=row.user_id,
            entry_type=EntryType(row.entry_type),
            amount=from_cents(row.amount_cents),
            balance_after=from_cents(row.balance_after_cents),
            reference=row.reference,
            description=row.description,
            created_at=row.created_at,
        )


class SystemSetting(BaseModel):
    key: str
    value: str
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalysisPeriod(BaseModel):
    id: int
    period_minutes: int
    cost_multiplier: Decimal
    is_active: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row: AnalysisPeriodRow) -> "AnalysisPeriod":
        return cls(
            id=row.id,
            period_minutes=row.period_minutes,
            cost_multiplier=Decimal(str(row.cost_multiplier)).quantize(CENT),
            is_active=row.is_active,
            created_at=row.created_at,
        )


class UserBalance(BaseModel):
    user_id: int
    external_id: int
    current_balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: int
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


# Results

class BetApprovalResult(BaseModel):
    bet: BetReport
    ledger_entry: LedgerEntry
    message: str


class RedemptionResult(BaseModel):
    success: bool
    code: str
    reason: Optional[RedemptionFailure] = None
    ledger_entry: Optional[LedgerEntry] = None
    message: str


class PurchaseResult(BaseModel):
    success: bool
    product: AnalysisProduct
    cost: Decimal
    balance: Decimal
    ledger_entry: LedgerEntry
