"""
Admin-configurable data: system settings and analysis periods.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import (
    AnalysisPeriod,
    CreateAnalysisPeriodRequest,
    SystemSetting,
    UpdateAnalysisPeriodRequest,
)
from .money import CENT
from .schema import AnalysisPeriodRow, SystemSettingRow
from .store import LedgerStore

BOT_LOGO_KEY = "bot_logo_url"
MAX_COST_MULTIPLIER = Decimal("99.99")


class SettingsRegistry:
    def __init__(self, store: LedgerStore):
        self.store = store

    def get(self, key: str) -> Optional[SystemSetting]:
        with self.store.transaction() as session:
            row = self._find(session, key)
            return SystemSetting.model_validate(row) if row else None

    def set(self, key: str, value: str) -> SystemSetting:
        key = key.strip()
        if not key:
            raise ValidationError("Setting key is required")

        with self.store.transaction() as session:
            row = self._find(session, key)
            if row is None:
                row = SystemSettingRow(key=key, value=value)
                session.add(row)
            else:
                row.value = value
            session.flush()
            logger.info(f"Setting {key!r} updated")
            return SystemSetting.model_validate(row)

    def list_all(self) -> list[SystemSetting]:
        with self.store.transaction() as session:
            rows = session.execute(select(SystemSettingRow).order_by(SystemSettingRow.key)).scalars().all()
            return [SystemSetting.model_validate(row) for row in rows]

    def get_bot_logo(self) -> Optional[str]:
        setting = self.get(BOT_LOGO_KEY)
        return setting.value if setting else None

    def update_bot_logo(self, logo_url: str) -> SystemSetting:
        if not logo_url or not logo_url.strip():
            raise ValidationError("Logo URL is required")
        return self.set(BOT_LOGO_KEY, logo_url.strip())

    @staticmethod
    def _find(session: Session, key: str) -> Optional[SystemSettingRow]:
        return session.execute(
            select(SystemSettingRow).where(SystemSettingRow.key == key)
        ).scalar_one_or_none()


def _check_multiplier(value: Decimal) -> Decimal:
    try:
        multiplier = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"cost_multiplier is not a valid number: {value!r}")
    if not multiplier.is_finite() or multiplier <= 0 or multiplier > MAX_COST_MULTIPLIER:
        raise ValidationError(f"cost_multiplier must be in (0, {MAX_COST_MULTIPLIER}]")
    if multiplier != multiplier.quantize(CENT):
        raise ValidationError("cost_multiplier has more than two decimal places")
    return multiplier


def _check_minutes(value: int) -> int:
    if value <= 0:
        raise ValidationError("period_minutes must be positive")
    return value


class AnalysisPeriodCatalog:
    def __init__(self, store: LedgerStore):
        self.store = store

    def list_active(self) -> list[AnalysisPeriod]:
        with self.store.transaction() as session:
            rows = session.execute(
                select(AnalysisPeriodRow)
                .where(AnalysisPeriodRow.is_active.is_(True))
                .order_by(AnalysisPeriodRow.period_minutes, AnalysisPeriodRow.id)
            ).scalars().all()
            return [AnalysisPeriod.from_row(row) for row in rows]

    def create(self, request: CreateAnalysisPeriodRequest) -> AnalysisPeriod:
        row = AnalysisPeriodRow(
            period_minutes=_check_minutes(request.period_minutes),
            cost_multiplier=_check_multiplier(request.cost_multiplier),
            is_active=request.is_active,
        )
        with self.store.transaction() as session:
            session.add(row)
            session.flush()
            logger.info(f"Analysis period {row.id} created ({row.period_minutes} min x{row.cost_multiplier})")
            return AnalysisPeriod.from_row(row)

    def update(self, period_id: int, request: UpdateAnalysisPeriodRequest) -> AnalysisPeriod:
        with self.store.transaction() as session:
            row = self._load(session, period_id)
            if request.period_minutes is not None:
                row.period_minutes = _check_minutes(request.period_minutes)
            if request.cost_multiplier is not None:
                row.cost_multiplier = _check_multiplier(request.cost_multiplier)
            if request.is_active is not None:
                row.is_active = request.is_active
            session.flush()
            logger.info(f"Analysis period {period_id} updated")
            return AnalysisPeriod.from_row(row)

    def deactivate(self, period_id: int) -> AnalysisPeriod:
        """Soft delete: the row stays for historical references."""
        with self.store.transaction() as session:
            row = self._load(session, period_id)
            row.is_active = False
            session.flush()
            logger.info(f"Analysis period {period_id} deactivated")
            return AnalysisPeriod.from_row(row)

    @staticmethod
    def load_active(session: Session, period_id: int) -> AnalysisPeriodRow:
        row = session.get(AnalysisPeriodRow, period_id)
        if row is None or not row.is_active:
            raise NotFoundError(f"Active analysis period {period_id} not found")
        return row

    @staticmethod
    def _load(session: Session, period_id: int) -> AnalysisPeriodRow:
        row = session.get(AnalysisPeriodRow, period_id)
        if row is None:
            raise NotFoundError(f"Analysis period {period_id} not found")
        return row
