from __future__ import annotations

import sqlite3
from typing import Any

from ....domain.models import TakealotProduct
from ..connection import iso_utcnow
from ..schema import ensure_schema
from .base import BaseRepository


class ProductRepository(BaseRepository):
    """Per-integration product catalogue keyed by marketplace product id."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def exists(self, integration_id: int, product_id: str) -> bool:
        return (
            self._fetch_scalar(
                "SELECT 1 FROM products WHERE integration_id = ? AND product_id = ?",
                (integration_id, product_id),
            )
            is not None
        )

    def upsert(
        self,
        integration_id: int,
        product: TakealotProduct,
        sync_run_id: int | None = None,
    ) -> bool:
        """Insert or replace one product; returns True when it was new."""
        existed = self.exists(integration_id, product.id)
        now = iso_utcnow()
        self._execute(
            "INSERT INTO products (integration_id, product_id, title, price, currency, "
            "availability, url, first_seen_at, last_synced_at, last_sync_run_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(integration_id, product_id) DO UPDATE SET "
            "title = excluded.title, price = excluded.price, "
            "currency = excluded.currency, availability = excluded.availability, "
            "url = excluded.url, last_synced_at = excluded.last_synced_at, "
            "last_sync_run_id = excluded.last_sync_run_id",
            (
                integration_id,
                product.id,
                product.title,
                product.price,
                product.currency,
                product.availability,
                product.url,
                now,
                now,
                sync_run_id,
            ),
        )
        return not existed

    def get(self, integration_id: int, product_id: str) -> TakealotProduct | None:
        row = self._fetch_one_as_dict(
            "SELECT product_id, title, price, currency, availability, url "
            "FROM products WHERE integration_id = ? AND product_id = ?",
            (integration_id, product_id),
        )
        return _row_to_product(row) if row else None

    def list(
        self, integration_id: int, *, limit: int = 100, offset: int = 0
    ) -> list[TakealotProduct]:
        rows = self._fetch_all_as_dicts(
            "SELECT product_id, title, price, currency, availability, url "
            "FROM products WHERE integration_id = ? "
            "ORDER BY product_id LIMIT ? OFFSET ?",
            (integration_id, limit, offset),
        )
        return [_row_to_product(row) for row in rows]

    def count(self, integration_id: int) -> int:
        return int(
            self._fetch_scalar(
                "SELECT COUNT(*) FROM products WHERE integration_id = ?",
                (integration_id,),
            )
            or 0
        )


def _row_to_product(row: dict[str, Any]) -> TakealotProduct:
    return TakealotProduct(
        id=row["product_id"],
        title=row["title"],
        price=float(row["price"]),
        currency=row["currency"],
        availability=row["availability"],
        url=row["url"],
    )
