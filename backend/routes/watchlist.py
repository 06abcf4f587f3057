"""Watchlist Routes - one watchlist per user, size capped by tier.

Endpoints:
- GET /api/watchlist - Watchlist with logo/company name enrichment
- POST /api/watchlist - Add a ticker (404 unknown stock, 400 duplicate, 403 over tier limit)
- DELETE /api/watchlist/{ticker} - Remove a ticker
- PUT /api/watchlist/{ticker}/alert - Price alert config (watchlist_alerts)
- GET /api/watchlist/export - CSV of watched stocks (export_data)
"""
from fastapi import APIRouter, HTTPException, status, Depends
from database import database
from models import WatchlistAddRequest, AlertConfigRequest, Feature, utc_now
from middleware import require_auth, require_feature
from services.tier_catalog import effective_tier, get_tier_limits
from services.export_service import csv_response, EXPORT_PROJECTION
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/watchlist", tags=["watchlist"])

DEFAULT_WATCHLIST_NAME = "My Watchlist"


async def _get_or_create_watchlist(user_id: str) -> dict:
    db = database.get_db()
    watchlist = await db.watchlists.find_one(
        {"user_id": user_id, "name": DEFAULT_WATCHLIST_NAME}, {"_id": 0}
    )
    if watchlist:
        return watchlist

    now = utc_now()
    watchlist = {
        "user_id": user_id,
        "name": DEFAULT_WATCHLIST_NAME,
        "stocks": [],
        "created_at": now,
        "updated_at": now,
    }
    # Upsert so two first requests can't create two lists
    await db.watchlists.update_one(
        {"user_id": user_id, "name": DEFAULT_WATCHLIST_NAME},
        {"$setOnInsert": dict(watchlist)},
        upsert=True,
    )
    return watchlist


async def _load_watchlist(user_id: str) -> dict:
    db = database.get_db()
    watchlist = await db.watchlists.find_one(
        {"user_id": user_id, "name": DEFAULT_WATCHLIST_NAME}, {"_id": 0}
    )
    if not watchlist:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Watchlist not found")
    return watchlist


@router.get("")
async def get_watchlist(user: dict = Depends(require_auth)):
    db = database.get_db()
    watchlist = await _get_or_create_watchlist(user["user_id"])

    tickers = [item["ticker"] for item in watchlist.get("stocks", [])]
    if tickers:
        details = await db.stocks.find(
            {"ticker": {"$in": tickers}},
            {"_id": 0, "ticker": 1, "logo": 1, "company_name": 1}
        ).to_list(length=len(tickers))
        by_ticker = {d["ticker"]: d for d in details}
        watchlist["stocks"] = [
            {
                **item,
                "logo": by_ticker.get(item["ticker"], {}).get("logo"),
                "company_name": by_ticker.get(item["ticker"], {}).get("company_name"),
            }
            for item in watchlist["stocks"]
        ]

    return watchlist


@router.post("")
async def add_to_watchlist(data: WatchlistAddRequest, user: dict = Depends(require_auth)):
    db = database.get_db()
    ticker = data.ticker.upper()

    if not await db.stocks.find_one({"ticker": ticker}, {"_id": 0, "ticker": 1}):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock not found")

    watchlist = await _get_or_create_watchlist(user["user_id"])
    stocks = watchlist.get("stocks", [])

    if any(item["ticker"] == ticker for item in stocks):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stock already in watchlist")

    tier = effective_tier(user.get("subscription"))
    limits = get_tier_limits(tier)
    if len(stocks) >= limits.max_watchlist_size:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Your {tier.value} tier limit reached ({limits.max_watchlist_size} stocks). Upgrade to add more."
        )

    item = {"ticker": ticker, "added_at": utc_now()}
    now = utc_now()
    # Guard on the ticker again so concurrent adds can't duplicate it
    await db.watchlists.update_one(
        {"user_id": user["user_id"], "name": DEFAULT_WATCHLIST_NAME, "stocks.ticker": {"$ne": ticker}},
        {"$push": {"stocks": item}, "$set": {"updated_at": now}},
    )

    watchlist["stocks"] = stocks + [item]
    watchlist["updated_at"] = now
    return watchlist


@router.get("/export")
async def export_watchlist(user: dict = Depends(require_feature(Feature.EXPORT_DATA))):
    db = database.get_db()
    watchlist = await db.watchlists.find_one(
        {"user_id": user["user_id"], "name": DEFAULT_WATCHLIST_NAME}, {"_id": 0, "stocks.ticker": 1}
    )
    tickers = [item["ticker"] for item in (watchlist or {}).get("stocks", [])]
    if not tickers:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Watchlist is empty")

    stocks = await db.stocks.find(
        {"ticker": {"$in": tickers}}, EXPORT_PROJECTION
    ).sort("ticker", 1).to_list(length=len(tickers))
    if not stocks:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No stock data found for watchlist items"
        )

    return csv_response(stocks, "flexbit_watchlist_export.csv")


@router.delete("/{ticker}")
async def remove_from_watchlist(ticker: str, user: dict = Depends(require_auth)):
    db = database.get_db()
    ticker = ticker.upper()
    watchlist = await _load_watchlist(user["user_id"])

    now = utc_now()
    await db.watchlists.update_one(
        {"user_id": user["user_id"], "name": DEFAULT_WATCHLIST_NAME},
        {"$pull": {"stocks": {"ticker": ticker}}, "$set": {"updated_at": now}},
    )

    watchlist["stocks"] = [item for item in watchlist.get("stocks", []) if item["ticker"] != ticker]
    watchlist["updated_at"] = now
    return watchlist


@router.put("/{ticker}/alert")
async def update_alert_config(
    ticker: str,
    data: AlertConfigRequest,
    user: dict = Depends(require_feature(Feature.WATCHLIST_ALERTS)),
):
    db = database.get_db()
    ticker = ticker.upper()
    watchlist = await _load_watchlist(user["user_id"])

    if not any(item["ticker"] == ticker for item in watchlist.get("stocks", [])):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock not in watchlist")

    alert_config = {
        "price_above": data.price_above,
        "price_below": data.price_below,
        "active": data.active,
    }
    now = utc_now()
    await db.watchlists.update_one(
        {"user_id": user["user_id"], "name": DEFAULT_WATCHLIST_NAME, "stocks.ticker": ticker},
        {"$set": {"stocks.$.alert_config": alert_config, "updated_at": now}},
    )

    for item in watchlist["stocks"]:
        if item["ticker"] == ticker:
            item["alert_config"] = alert_config
    watchlist["updated_at"] = now
    return watchlist
