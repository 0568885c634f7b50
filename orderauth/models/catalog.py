from __future__ import annotations

import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from orderauth.core.database import Base
from orderauth.models.records import new_id, utcnow


class Item(Base):
    __tablename__ = "items"

    name: Mapped[str]
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default_factory=new_id
    )
    description: Mapped[str | None] = mapped_column(default=None)
    unit: Mapped[str | None] = mapped_column(default=None)
    image_url: Mapped[str | None] = mapped_column(default=None)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default_factory=utcnow
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )


class Order(Base):
    __tablename__ = "orders"

    customer_id: Mapped[str] = mapped_column(String(64), index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default_factory=new_id
    )
    status: Mapped[str] = mapped_column(String(32), default="pending")
    notes: Mapped[str | None] = mapped_column(default=None)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default_factory=utcnow, index=True
    )
