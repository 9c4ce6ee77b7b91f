"""Table definitions for the link pool and the products derived from it."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()

monitored_links = Table(
    "monitored_links",
    metadata,
    Column("hash", Text, primary_key=True),
    Column("url", Text, nullable=False),
    Column("title", Text, nullable=False, default=""),
    Column("image", Text, nullable=False, default=""),
    Column("description", Text, nullable=False, default=""),
    Column("source", Text, nullable=False, default="unknown"),
    Column("price", Float, nullable=False, default=0.0),
    Column("currency", Text),
    Column("in_stock", Boolean, nullable=False, default=True),
    Column("last_checked", DateTime(timezone=True)),
    Index("idx_monitored_links_last_checked", "last_checked"),
)

link_products = Table(
    "link_products",
    metadata,
    Column("link_hash", Text, ForeignKey("monitored_links.hash"), primary_key=True),
    Column("product_id", Text, primary_key=True),
)

products = Table(
    "products",
    metadata,
    Column("id", Text, primary_key=True),
    Column("url", Text),
    Column("user_id", Text, nullable=False),
    Column("collection_name", Text, nullable=False, default="Uncategorized"),
    Column("title", Text, nullable=False, default=""),
    Column("image", Text, nullable=False, default=""),
    Column("description", Text, nullable=False, default=""),
    Column("source", Text),
    Column("price", Float),
    Column("currency", Text),
    Column("highest_price", Float),
    Column("price_drop_percentage", Integer, nullable=False, default=0),
    Column("in_stock", Boolean),
    Column("last_stock_check", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
)

price_history = Table(
    "price_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, ForeignKey("products.id"), nullable=False),
    Column("price", Float, nullable=False),
    Column("date", Text, nullable=False),
    Column("currency", Text, nullable=False),
    Index("idx_price_history_product", "product_id", "id"),
)

stock_alerts = Table(
    "stock_alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_url", Text),
    Column("product_id", Text),
    Column("user_id", Text),
    Column("email", Text),
    Column("status", Text, nullable=False, default="pending"),
)

# Scalar columns of a link that callers may set through an upsert.
LINK_FIELDS = frozenset(c.name for c in monitored_links.columns if c.name != "hash")
PRODUCT_FIELDS = frozenset(c.name for c in products.columns if c.name != "id")
