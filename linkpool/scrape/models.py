"""Scrape collaborator payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(slots=True)
class ScrapeResult:
    url: str
    title: str | None = None
    price: float | None = None
    currency: str | None = None
    image: str | None = None
    description: str | None = None
    source: str | None = None
    in_stock: bool | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """False when the collaborator reported an error or found nothing usable."""
        if self.error:
            return False
        return bool(self.title) or bool(self.price)

    @property
    def numeric_price(self) -> float:
        if isinstance(self.price, bool) or not isinstance(self.price, (int, float)):
            return 0.0
        return float(self.price)

    @classmethod
    def from_payload(cls, url: str, payload: Mapping[str, Any]) -> "ScrapeResult":
        in_stock = payload.get("inStock", payload.get("in_stock"))
        return cls(
            url=url,
            title=payload.get("title") or None,
            price=_coerce_price(payload.get("price")),
            currency=payload.get("currency") or None,
            image=payload.get("image") or None,
            description=payload.get("description") or None,
            source=payload.get("source") or None,
            in_stock=in_stock if isinstance(in_stock, bool) else None,
            error=payload.get("error") or None,
        )

    @classmethod
    def failure(cls, url: str, error: str) -> "ScrapeResult":
        return cls(url=url, error=error)


def _coerce_price(value: Any) -> float | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
