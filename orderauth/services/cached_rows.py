from __future__ import annotations

import logging
from typing import Any

from orderauth.integrations.row_store import SqlRowStore
from orderauth.models.catalog import Item, Order
from orderauth.models.records import Customer
from orderauth.services.data_cache import ITEMS_LIST_KEY, RECENT_ORDERS_KEY, DataCache
from orderauth.services.errors import surface_store_errors

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20


class CachedRows:
    """Read-through access to customers, items and recent orders.

    Writes cache the row returned by the store, not the submitted one, and
    drop every list that could now be stale.
    """

    def __init__(self, row_store: SqlRowStore, data_cache: DataCache):
        self._rows = row_store
        self._cache = data_cache

    def _invalidate_lists(self, name: str) -> None:
        for key in self._cache.lists.keys():
            if isinstance(key, tuple) and key[0] == name:
                self._cache.lists.invalidate(key)

    async def get_customer(self, customer_id: str) -> Customer | None:
        cached = self._cache.customers.get(customer_id)
        if cached is not None:
            return cached
        with surface_store_errors("Loading customer"):
            row = await self._rows.get_customer(customer_id)
        if row is not None:
            self._cache.customers.set(customer_id, row)
        return row

    async def update_customer(
        self, customer_id: str, changes: dict[str, Any]
    ) -> Customer | None:
        with surface_store_errors("Updating customer"):
            row = await self._rows.update_customer(customer_id, changes)
        if row is None:
            self._cache.customers.invalidate(customer_id)
            return None
        self._cache.customers.set(row.id, row)
        return row

    async def get_item(self, item_id: str) -> Item | None:
        cached = self._cache.items.get(item_id)
        if cached is not None:
            return cached
        with surface_store_errors("Loading item"):
            row = await self._rows.get_item(item_id)
        if row is not None:
            self._cache.items.set(item_id, row)
        return row

    async def list_items(self, *, limit: int = DEFAULT_LIST_LIMIT) -> list[Item]:
        key = (ITEMS_LIST_KEY, limit)
        cached = self._cache.lists.get(key)
        if cached is not None:
            return cached
        with surface_store_errors("Listing items"):
            rows = await self._rows.list_items(limit=limit)
        self._cache.lists.set(key, rows)
        for row in rows:
            self._cache.items.set(row.id, row)
        return rows

    async def create_item(self, item: Item) -> Item:
        with surface_store_errors("Creating item"):
            row = await self._rows.insert_item(item)
        self._cache.items.set(row.id, row)
        self._invalidate_lists(ITEMS_LIST_KEY)
        return row

    async def update_item(self, item_id: str, changes: dict[str, Any]) -> Item | None:
        with surface_store_errors("Updating item"):
            row = await self._rows.update_item(item_id, changes)
        self._invalidate_lists(ITEMS_LIST_KEY)
        if row is None:
            self._cache.items.invalidate(item_id)
            return None
        self._cache.items.set(row.id, row)
        return row

    async def recent_orders(self, *, limit: int = DEFAULT_LIST_LIMIT) -> list[Order]:
        key = (RECENT_ORDERS_KEY, limit)
        cached = self._cache.lists.get(key)
        if cached is not None:
            return cached
        with surface_store_errors("Listing recent orders"):
            rows = await self._rows.list_recent_orders(limit=limit)
        self._cache.lists.set(key, rows)
        return rows

    async def create_order(self, order: Order) -> Order:
        with surface_store_errors("Creating order"):
            row = await self._rows.insert_order(order)
        self._invalidate_lists(RECENT_ORDERS_KEY)
        logger.debug("Order %s created for customer %s", row.id, row.customer_id)
        return row
