"""Per-product price bookkeeping applied on every reconciliation."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from linkpool.pool.models import PriceHistoryEntry, Product
from linkpool.utils.dates import iso_timestamp

PRICE_HISTORY_THRESHOLD = float(os.environ.get("PRICE_HISTORY_THRESHOLD", 0.1))
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "TRY")


@dataclass(slots=True)
class ProductUpdate:
    product_id: str
    fields: dict[str, Any]
    history: PriceHistoryEntry | None = None


def price_drop_percentage(highest: float, price: float) -> int:
    """Discount of ``price`` against ``highest`` as a whole percentage, rounded half up."""
    if highest <= 0 or price >= highest:
        return 0
    return math.floor((highest - price) / highest * 100 + 0.5)


def price_changed(old: float | None, new: float, threshold: float = PRICE_HISTORY_THRESHOLD) -> bool:
    return abs((old or 0.0) - new) > threshold


def compute_product_update(
    product: Product,
    new_price: float,
    in_stock: bool,
    now: datetime,
) -> ProductUpdate:
    current_price = product.price or 0.0
    current_highest = product.highest_price or current_price
    fields: dict[str, Any] = {
        "price": new_price,
        "in_stock": in_stock,
        "last_stock_check": now,
    }
    update = ProductUpdate(product_id=product.id, fields=fields)

    if new_price > current_highest:
        fields["highest_price"] = new_price
        fields["price_drop_percentage"] = 0
    elif 0 < new_price == current_highest:
        fields["highest_price"] = current_highest
        fields["price_drop_percentage"] = 0
    elif 0 < new_price < current_highest:
        fields["highest_price"] = current_highest
        fields["price_drop_percentage"] = price_drop_percentage(current_highest, new_price)

    if price_changed(current_price, new_price):
        update.history = PriceHistoryEntry(
            price=new_price,
            date=iso_timestamp(now),
            currency=product.currency or DEFAULT_CURRENCY,
        )
    return update
