from __future__ import annotations

import datetime
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderauth.models.catalog import Item, Order
from orderauth.models.records import (
    AdminInvitation,
    AdminRole,
    Administrator,
    Customer,
    utcnow,
)
from orderauth.services.errors import RowStoreError


def _normalize_email(value: str) -> str:
    return value.strip().lower()


class SqlRowStore:
    """Typed access to the administrator, customer, invitation and catalog rows.

    Every database failure surfaces as ``RowStoreError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                raise RowStoreError(str(exc)) from exc

    async def _add(self, row: Any) -> Any:
        async with self._session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def get_admin(self, user_id: str) -> Administrator | None:
        async with self._session() as session:
            return await session.get(Administrator, user_id)

    async def find_admin_by_email(
        self, email: str, *, role: AdminRole | None = None
    ) -> Administrator | None:
        stmt = select(Administrator).where(
            func.lower(Administrator.email) == _normalize_email(email)
        )
        if role is not None:
            stmt = stmt.where(Administrator.role == role)
        async with self._session() as session:
            return (await session.execute(stmt.limit(1))).scalar_one_or_none()

    async def list_admins(self, *, role: AdminRole | None = None) -> list[Administrator]:
        stmt = select(Administrator).order_by(Administrator.created_at.desc())
        if role is not None:
            stmt = stmt.where(Administrator.role == role)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars())

    async def has_active_admin(self) -> bool:
        stmt = select(Administrator.id).where(Administrator.role == AdminRole.admin)
        async with self._session() as session:
            return (await session.execute(stmt.limit(1))).first() is not None

    async def insert_admin(self, admin: Administrator) -> Administrator:
        return await self._add(admin)

    async def delete_admin(self, user_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(Administrator).where(Administrator.id == user_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def is_admin(self, user_id: str) -> bool:
        """Single round-trip privilege check backed by the ``is_admin`` function."""
        async with self._session() as session:
            if session.get_bind().dialect.name != "postgresql":
                raise RowStoreError("is_admin function is not available")
            result = await session.execute(select(func.is_admin(user_id)))
            return bool(result.scalar())

    async def get_customer(self, user_id: str) -> Customer | None:
        async with self._session() as session:
            return await session.get(Customer, user_id)

    async def insert_customer(self, customer: Customer) -> Customer:
        return await self._add(customer)

    async def update_customer(
        self, user_id: str, changes: dict[str, Any]
    ) -> Customer | None:
        async with self._session() as session:
            customer = await session.get(Customer, user_id)
            if customer is None:
                return None
            for key, value in changes.items():
                setattr(customer, key, value)
            customer.updated_at = utcnow()
            await session.commit()
            await session.refresh(customer)
            return customer

    async def insert_invitation(
        self, invitation: AdminInvitation, placeholder: Administrator | None
    ) -> AdminInvitation:
        async with self._session() as session:
            session.add(invitation)
            if placeholder is not None:
                session.add(placeholder)
            await session.commit()
            await session.refresh(invitation)
            return invitation

    async def get_invitation(self, invitation_id: str) -> AdminInvitation | None:
        async with self._session() as session:
            return await session.get(AdminInvitation, invitation_id)

    async def find_invitation_by_token_hash(
        self, token_hash: str
    ) -> AdminInvitation | None:
        stmt = select(AdminInvitation).where(AdminInvitation.token_hash == token_hash)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def find_active_invitation(
        self, email: str, *, now: datetime.datetime
    ) -> AdminInvitation | None:
        stmt = (
            select(AdminInvitation)
            .where(func.lower(AdminInvitation.email) == _normalize_email(email))
            .where(AdminInvitation.used.is_(False))
            .where(AdminInvitation.expires_at > now)
            .order_by(AdminInvitation.created_at.desc())
            .limit(1)
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_invitations(self) -> list[AdminInvitation]:
        stmt = select(AdminInvitation).order_by(AdminInvitation.created_at.desc())
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars())

    async def rotate_invitation_token(
        self, invitation_id: str, *, token_hash: str, expires_at: datetime.datetime
    ) -> AdminInvitation | None:
        async with self._session() as session:
            result = await session.execute(
                update(AdminInvitation)
                .where(
                    AdminInvitation.id == invitation_id,
                    AdminInvitation.used.is_(False),
                )
                .values(token_hash=token_hash, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if not result.rowcount:
                return None
            return await session.get(AdminInvitation, invitation_id, populate_existing=True)

    async def delete_pending_invitation(self, invitation: AdminInvitation) -> bool:
        """Remove an unused invitation and its ``invited`` placeholder row."""
        email = _normalize_email(invitation.email)
        async with self._session() as session:
            result = await session.execute(
                delete(AdminInvitation).where(
                    AdminInvitation.id == invitation.id,
                    AdminInvitation.used.is_(False),
                )
            )
            if not result.rowcount:
                await session.rollback()
                return False
            remaining = await session.execute(
                select(AdminInvitation.id)
                .where(func.lower(AdminInvitation.email) == email)
                .where(AdminInvitation.used.is_(False))
                .limit(1)
            )
            if remaining.first() is None:
                await session.execute(
                    delete(Administrator).where(
                        func.lower(Administrator.email) == email,
                        Administrator.role == AdminRole.invited,
                    )
                )
            await session.commit()
            return True

    async def redeem_invitation(
        self,
        email: str,
        *,
        user_id: str,
        name: str,
        phone: str | None,
        now: datetime.datetime,
        token_hash: str | None = None,
    ) -> Administrator | None:
        """Promote the ``invited`` row for ``email`` to ``admin`` exactly once.

        Both conditional updates run in one transaction; if either matches
        nothing the transaction is rolled back and ``None`` is returned.
        """
        email = _normalize_email(email)
        async with self._session() as session:
            invitation_stmt = (
                update(AdminInvitation)
                .where(func.lower(AdminInvitation.email) == email)
                .where(AdminInvitation.used.is_(False))
                .where(AdminInvitation.expires_at > now)
                .values(used=True, used_at=now)
                .execution_options(synchronize_session=False)
            )
            if token_hash is not None:
                invitation_stmt = invitation_stmt.where(
                    AdminInvitation.token_hash == token_hash
                )
            consumed = await session.execute(invitation_stmt)
            if not consumed.rowcount:
                await session.rollback()
                return None

            promoted = await session.execute(
                update(Administrator)
                .where(func.lower(Administrator.email) == email)
                .where(Administrator.role == AdminRole.invited)
                .values(
                    id=user_id,
                    name=name,
                    phone=phone,
                    role=AdminRole.admin,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if promoted.rowcount != 1:
                await session.rollback()
                return None

            await session.commit()
            return await session.get(Administrator, user_id)

    async def get_item(self, item_id: str) -> Item | None:
        async with self._session() as session:
            return await session.get(Item, item_id)

    async def list_items(self, *, limit: int) -> list[Item]:
        stmt = select(Item).order_by(Item.name).limit(limit)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars())

    async def insert_item(self, item: Item) -> Item:
        return await self._add(item)

    async def update_item(self, item_id: str, changes: dict[str, Any]) -> Item | None:
        async with self._session() as session:
            item = await session.get(Item, item_id)
            if item is None:
                return None
            for key, value in changes.items():
                setattr(item, key, value)
            item.updated_at = utcnow()
            await session.commit()
            await session.refresh(item)
            return item

    async def list_recent_orders(self, *, limit: int) -> list[Order]:
        stmt = select(Order).order_by(Order.created_at.desc()).limit(limit)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars())

    async def insert_order(self, order: Order) -> Order:
        return await self._add(order)
