"""FastAPI application for triggering checks and registering products."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from linkpool.db.session import create_engine_from_env
from linkpool.jobs.check_stock import DEFAULT_LIMIT, run_check_stock
from linkpool.logic.keys import is_trackable_url
from linkpool.pool.models import Product
from linkpool.pool.store import LinkPoolStore
from linkpool.scrape.client import Scraper
from linkpool.utils.dates import utc_now
from linkpool.utils.tokens import cron_secret, verify_trigger_token

logger = logging.getLogger(__name__)

app = FastAPI(title="Link Pool API")


class AddProductRequest(BaseModel):
    url: str
    userId: str
    collection: str | None = None
    title: str | None = None
    image: str | None = None
    price: float | None = None
    currency: str | None = None


class AddProductResponse(BaseModel):
    success: bool
    id: str
    linkHash: str


class DueLink(BaseModel):
    hash: str
    url: str
    price: float
    inStock: bool
    lastChecked: datetime | None
    productCount: int


def get_engine() -> Engine:
    return create_engine_from_env()


def get_scraper() -> Scraper | None:
    """Default: the job opens its own scrape client."""
    return None


@app.get("/cron/check-stock")
async def check_stock(
    token: str | None = Query(None),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    scraper: Scraper | None = Depends(get_scraper),
) -> JSONResponse:
    secret = cron_secret()
    if secret and (not token or not verify_trigger_token(token, secret)):
        raise HTTPException(status_code=401, detail="Invalid trigger token")
    try:
        report = await run_check_stock(limit, engine=engine, scraper=scraper)
    except SQLAlchemyError:
        logger.exception("Cron job error")
        return JSONResponse({"success": False, "error": "Internal Server Error"}, status_code=500)
    return JSONResponse({"success": True, **report.as_dict()})


@app.post("/products", response_model=AddProductResponse)
async def add_product(payload: AddProductRequest, engine: Engine = Depends(get_engine)) -> AddProductResponse:
    if not is_trackable_url(payload.url) or not payload.userId.strip():
        raise HTTPException(status_code=400, detail="URL and userId are required")
    now = utc_now()
    product = Product(
        id=uuid.uuid4().hex,
        user_id=payload.userId,
        url=payload.url.strip(),
        collection_name=payload.collection or "Uncategorized",
        title=payload.title or "",
        image=payload.image or "",
        price=payload.price,
        currency=payload.currency,
        highest_price=payload.price,
        created_at=now,
    )
    store = LinkPoolStore(engine)
    try:
        link_hash = store.track_product(product)
    except SQLAlchemyError as exc:
        logger.exception("Saving product failed")
        raise HTTPException(status_code=500, detail="Database save failed") from exc
    return AddProductResponse(success=True, id=product.id, linkHash=link_hash)


@app.get("/links/due", response_model=list[DueLink])
async def due_links(limit: int = Query(DEFAULT_LIMIT, ge=1, le=100), engine: Engine = Depends(get_engine)) -> list[dict[str, Any]]:
    store = LinkPoolStore(engine)
    return [
        {
            "hash": link.hash,
            "url": link.url,
            "price": link.price,
            "inStock": link.in_stock,
            "lastChecked": link.last_checked,
            "productCount": len(link.product_ids),
        }
        for link in store.get_due_links(limit)
    ]
