"""Persistent cache of daily native-asset prices."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costbasis.db.session import Base, TimestampMixin


class DailyPriceCache(TimestampMixin, Base):
    """USD price of one asset on one UTC calendar date. Written once, never updated."""

    __tablename__ = "daily_price_cache"
    __table_args__ = (UniqueConstraint("symbol", "day", name="uq_daily_price_cache_symbol_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    day: Mapped[date] = mapped_column(Date, index=True)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    source: Mapped[str] = mapped_column(String(50), default="coingecko")
