from __future__ import annotations

import datetime
import uuid
from enum import StrEnum

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from orderauth.core.database import Base


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class AdminRole(StrEnum):
    invited = "invited"
    admin = "admin"


class Administrator(Base):
    __tablename__ = "administrators"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), index=True)
    name: Mapped[str]
    phone: Mapped[str | None] = mapped_column(default=None)
    role: Mapped[AdminRole] = mapped_column(
        Enum(
            AdminRole,
            name="adminrole",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        default=AdminRole.invited,
        server_default=AdminRole.invited.value,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default_factory=utcnow
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str]
    email: Mapped[str | None] = mapped_column(String(320), default=None, index=True)
    phone: Mapped[str | None] = mapped_column(default=None)
    address: Mapped[str | None] = mapped_column(default=None)
    barangay: Mapped[str | None] = mapped_column(default=None)
    town: Mapped[str | None] = mapped_column(default=None)
    province: Mapped[str | None] = mapped_column(default=None)
    contact_person: Mapped[str | None] = mapped_column(default=None)
    contact_number: Mapped[str | None] = mapped_column(default=None)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default_factory=utcnow
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )


class AdminInvitation(Base):
    __tablename__ = "admin_invitations"

    email: Mapped[str] = mapped_column(String(320), index=True)
    token_hash: Mapped[str] = mapped_column(unique=True, index=True, repr=False)
    created_by: Mapped[str] = mapped_column(String(64), index=True)
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default_factory=new_id
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default_factory=utcnow
    )
    used: Mapped[bool] = mapped_column(default=False)
    used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
