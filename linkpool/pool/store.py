"""Persistence access for the link pool.

Every multi-row change goes through a :class:`WriteBatch`, which applies its
staged operations inside a single transaction: either all of them land or
none do.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine

from linkpool.db.tables import (
    LINK_FIELDS,
    PRODUCT_FIELDS,
    link_products,
    monitored_links,
    price_history,
    products,
    stock_alerts,
)
from linkpool.logic.keys import derive_key, is_trackable_url
from linkpool.pool.models import MonitoredLink, PendingAlert, PriceHistoryEntry, Product

logger = logging.getLogger(__name__)

Operation = Callable[[Connection], None]

_LINK_DEFAULTS = {
    column.name: (column.default.arg if column.default is not None else None)
    for column in monitored_links.columns
    if column.name in LINK_FIELDS
}


def _insert(conn: Connection, table):
    if conn.dialect.name == "postgresql":
        return postgresql.insert(table)
    if conn.dialect.name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on {conn.dialect.name}")


def _check_fields(fields: Mapping[str, Any], allowed: frozenset[str], kind: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown {kind} fields: {', '.join(sorted(unknown))}")


class WriteBatch:
    """Staged writes applied together by :meth:`commit`."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._ops: list[Operation] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def committed(self) -> bool:
        return self._committed

    def _stage(self, op: Operation) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        self._ops.append(op)

    def upsert_link(
        self,
        key: str,
        fields: Mapping[str, Any],
        *,
        product_ids: Iterable[str] = (),
        merge: bool = True,
    ) -> None:
        """Create or update the link at ``key`` and add ``product_ids`` to its set.

        With ``merge`` only the given fields change on an existing link;
        without it, fields not given are reset to their defaults.
        """
        _check_fields(fields, LINK_FIELDS, "link")
        if "url" not in fields:
            raise ValueError("Link upserts must include the url")
        values = dict(fields)
        if merge:
            changes = dict(values)
        else:
            changes = {**_LINK_DEFAULTS, **values}
        ids = list(dict.fromkeys(product_ids))

        def op(conn: Connection) -> None:
            stmt = _insert(conn, monitored_links).values(hash=key, **values)
            conn.execute(stmt.on_conflict_do_update(index_elements=["hash"], set_=changes))
            for product_id in ids:
                conn.execute(
                    _insert(conn, link_products)
                    .values(link_hash=key, product_id=product_id)
                    .on_conflict_do_nothing(index_elements=["link_hash", "product_id"])
                )

        self._stage(op)

    def update_link(self, key: str, fields: Mapping[str, Any]) -> None:
        """Update an existing link; a missing link is left missing."""
        _check_fields(fields, LINK_FIELDS, "link")
        values = dict(fields)

        def op(conn: Connection) -> None:
            conn.execute(update(monitored_links).where(monitored_links.c.hash == key).values(**values))

        self._stage(op)

    def add_product(self, product: Product) -> None:
        record = product.to_record()

        def op(conn: Connection) -> None:
            conn.execute(products.insert().values(**record))

        self._stage(op)

    def update_product(self, product_id: str, fields: Mapping[str, Any]) -> None:
        _check_fields(fields, PRODUCT_FIELDS, "product")
        values = dict(fields)

        def op(conn: Connection) -> None:
            conn.execute(update(products).where(products.c.id == product_id).values(**values))

        self._stage(op)

    def add_price_history(self, product_id: str, entry: PriceHistoryEntry) -> None:
        values = {
            "product_id": product_id,
            "price": entry.price,
            "date": entry.date,
            "currency": entry.currency,
        }

        def op(conn: Connection) -> None:
            conn.execute(price_history.insert().values(**values))

        self._stage(op)

    def commit(self) -> int:
        """Apply every staged operation in one transaction; return how many."""
        if self._committed:
            raise RuntimeError("Batch already committed")
        count = len(self._ops)
        if count:
            with self.engine.begin() as conn:
                for op in self._ops:
                    op(conn)
        self._committed = True
        return count


class LinkPoolStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def batch(self) -> WriteBatch:
        return WriteBatch(self.engine)

    def upsert_link(
        self,
        key: str,
        fields: Mapping[str, Any],
        *,
        product_ids: Iterable[str] = (),
        merge: bool = True,
    ) -> None:
        batch = self.batch()
        batch.upsert_link(key, fields, product_ids=product_ids, merge=merge)
        batch.commit()

    def get_link(self, key: str) -> MonitoredLink | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(monitored_links).where(monitored_links.c.hash == key)
            ).mappings().first()
            if row is None:
                return None
            ids = self._product_ids(conn, [key])
        return MonitoredLink.from_row(row, ids.get(key, frozenset()))

    def get_due_links(self, limit: int, order_by: str = "last_checked") -> list[MonitoredLink]:
        """Up to ``limit`` links, least recently checked first.

        Links never checked come first; ties are broken by key.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if order_by not in LINK_FIELDS:
            raise ValueError(f"Cannot order links by {order_by!r}")
        column = monitored_links.c[order_by]
        query = (
            select(monitored_links)
            .order_by(column.asc().nulls_first(), monitored_links.c.hash.asc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
            ids = self._product_ids(conn, [row["hash"] for row in rows])
        return [MonitoredLink.from_row(row, ids.get(row["hash"], frozenset())) for row in rows]

    def iter_link_products(self, key: str) -> Iterator[str]:
        """Product ids referencing ``key``, read when iteration starts."""
        query = (
            select(link_products.c.product_id)
            .where(link_products.c.link_hash == key)
            .order_by(link_products.c.product_id)
        )
        with self.engine.connect() as conn:
            ids = conn.execute(query).scalars().all()
        yield from ids

    def get_product(self, product_id: str) -> Product | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(products).where(products.c.id == product_id)
            ).mappings().first()
        return Product.from_row(row) if row else None

    def iter_products(self) -> Iterator[Product]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(products).order_by(products.c.id)).mappings().all()
        for row in rows:
            yield Product.from_row(row)

    def price_history(self, product_id: str) -> list[PriceHistoryEntry]:
        query = (
            select(price_history.c.price, price_history.c.date, price_history.c.currency)
            .where(price_history.c.product_id == product_id)
            .order_by(price_history.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).all()
        return [PriceHistoryEntry(price=price, date=date, currency=currency) for price, date, currency in rows]

    def pending_alerts_by_key(self) -> dict[str, list[PendingAlert]]:
        query = select(stock_alerts).where(stock_alerts.c.status == "pending").order_by(stock_alerts.c.id)
        grouped: dict[str, list[PendingAlert]] = defaultdict(list)
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        for row in rows:
            if not is_trackable_url(row["product_url"]):
                continue
            grouped[derive_key(row["product_url"])].append(
                PendingAlert(
                    id=row["id"],
                    product_url=row["product_url"],
                    user_id=row["user_id"],
                    email=row["email"],
                    product_id=row["product_id"],
                    status=row["status"],
                )
            )
        return dict(grouped)

    def track_product(self, product: Product) -> str:
        """Save a new product and attach it to the link for its URL.

        Returns the link key. An existing link keeps its ``last_checked`` so
        the scheduler's ordering is not disturbed, and only the values the
        product actually carries overwrite it; a new link gets column
        defaults for the rest.
        """
        if not is_trackable_url(product.url):
            raise ValueError(f"Product {product.id} has no trackable url")
        key = derive_key(product.url)
        provided = {
            "title": product.title,
            "image": product.image,
            "description": product.description,
            "source": product.source,
            "price": product.price,
            "currency": product.currency,
            "in_stock": product.in_stock,
        }
        fields = {"url": product.url.strip()}
        fields.update((name, value) for name, value in provided.items() if value not in (None, ""))
        if not fields.get("price"):
            fields.pop("price", None)
        batch = self.batch()
        batch.add_product(product)
        batch.upsert_link(key, fields, product_ids=[product.id])
        batch.commit()
        logger.info("Tracking product %s under link %s", product.id, key)
        return key

    @staticmethod
    def _product_ids(conn: Connection, keys: list[str]) -> dict[str, frozenset[str]]:
        if not keys:
            return {}
        rows = conn.execute(
            select(link_products.c.link_hash, link_products.c.product_id).where(
                link_products.c.link_hash.in_(keys)
            )
        ).all()
        grouped: dict[str, set[str]] = defaultdict(set)
        for link_hash, product_id in rows:
            grouped[link_hash].add(product_id)
        return {key: frozenset(ids) for key, ids in grouped.items()}
