from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from finhealth.db.base import Base


class FxUsdRate(Base):
    """Units of ``currency_code`` per one US dollar, effective from ``effective_date``."""

    __tablename__ = "fx_usd_rates"
    __table_args__ = (
        UniqueConstraint("currency_code", "effective_date", name="uq_fx_usd_rates_currency_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    currency_code: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(24, 10), nullable=False)
