"""Link pool data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


@dataclass(slots=True)
class MonitoredLink:
    hash: str
    url: str
    title: str = ""
    image: str = ""
    description: str = ""
    source: str = "unknown"
    price: float = 0.0
    currency: str | None = None
    in_stock: bool = True
    last_checked: datetime | None = None
    product_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], product_ids: frozenset[str] = frozenset()) -> "MonitoredLink":
        return cls(
            hash=row["hash"],
            url=row["url"],
            title=row["title"] or "",
            image=row["image"] or "",
            description=row["description"] or "",
            source=row["source"] or "unknown",
            price=row["price"] or 0.0,
            currency=row["currency"],
            in_stock=bool(row["in_stock"]),
            last_checked=row["last_checked"],
            product_ids=product_ids,
        )


@dataclass(slots=True)
class Product:
    id: str
    user_id: str
    url: str | None
    collection_name: str = "Uncategorized"
    title: str = ""
    image: str = ""
    description: str = ""
    source: str | None = None
    price: float | None = None
    currency: str | None = None
    highest_price: float | None = None
    price_drop_percentage: int = 0
    in_stock: bool | None = None
    last_stock_check: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        return cls(**{name: row[name] for name in cls.__slots__})

    def to_record(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass(slots=True)
class PriceHistoryEntry:
    price: float
    date: str
    currency: str


@dataclass(slots=True)
class PendingAlert:
    id: int
    product_url: str
    user_id: str | None
    email: str | None
    product_id: str | None = None
    status: str = "pending"
