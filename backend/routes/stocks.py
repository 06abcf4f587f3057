"""Stock Routes - Catalogue listing, screener, stats, detail and CSV export.

Listing, screener, stats and detail are public. Export requires the
export_data feature.
"""
from fastapi import APIRouter, HTTPException, Query, Path, status, Depends
from typing import Optional, Literal
from database import database
from models import Feature
from middleware import require_feature
from services.export_service import csv_response, EXPORT_PROJECTION
import logging
import math
import re

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/stocks", tags=["stocks"])

TICKER_PATTERN = r"^[A-Z]{1,10}(\.[A-Z]{1,3})?$"

# Timing labels are grouped by keyword ("Momentum Bagus", "Momentum Positif", ...)
TIMING_GROUPS = {
    "momentum": "Momentum",
    "accumulation": "Akumulasi",
    "stabilization": "Stabilisasi",
    "avoid": "Hindari",
}

QUALITY_BUCKETS = {
    "solid": "Sangat Solid",
    "fair": "Cukup Sehat",
    "attention": "Perlu Perhatian",
    "troubled": "Bermasalah",
}

LIST_PROJECTION = {
    "_id": 0,
    "ticker": 1,
    "logo": 1,
    "company_name": 1,
    "sector": 1,
    "analysis.flexbit_score": 1,
    "analysis.business_quality": 1,
    "analysis.timing_label": 1,
    "analysis.timing_score": 1,
    "analysis.conflict": 1,
    "analysis.investor_profile": 1,
    "analysis.stock_profile.emoji": 1,
    "technical.last_price": 1,
    "technical.price_change_percent": 1,
    "technical.trend": 1,
    "technical.trend_strength": 1,
    "technical.signals": 1,
}

SORT_OPTIONS = {
    "score": [("analysis.flexbit_score", -1)],
    "ticker": [("ticker", 1)],
    "price_asc": [("technical.last_price", 1)],
    "price_desc": [("technical.last_price", -1)],
}


def _timing_filter(timing: str):
    if timing in TIMING_GROUPS.values():
        return {"$regex": timing, "$options": "i"}
    return timing


@router.get("")
async def list_stocks(
    keyword: Optional[str] = Query(None, max_length=50, pattern=r"^[a-zA-Z0-9\s.-]*$"),
    quality: Optional[Literal["All", "Sangat Solid", "Cukup Sehat", "Perlu Perhatian", "Bermasalah"]] = None,
    timing: Optional[str] = Query(None, max_length=30, pattern=r"^[a-zA-Z\s]*$"),
    conflict: Optional[Literal["true", "false"]] = None,
    sort: Literal["ticker", "price_asc", "price_desc", "score"] = "score",
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
):
    db = database.get_db()
    query = {}

    if keyword:
        pattern = re.escape(keyword)
        query["$or"] = [
            {"ticker": {"$regex": pattern, "$options": "i"}},
            {"company_name": {"$regex": pattern, "$options": "i"}},
        ]
    if quality and quality != "All":
        query["analysis.business_quality"] = quality
    if timing:
        query["analysis.timing_label"] = _timing_filter(timing)
    if conflict:
        query["analysis.conflict.has_conflict"] = conflict == "true"

    total = await db.stocks.count_documents(query)
    cursor = (
        db.stocks.find(query, LIST_PROJECTION)
        .sort(SORT_OPTIONS[sort])
        .skip(limit * (page - 1))
        .limit(limit)
    )
    stocks = await cursor.to_list(length=limit)

    return {
        "stocks": stocks,
        "page": page,
        "pages": math.ceil(total / limit),
        "total": total,
    }


@router.get("/screener")
async def screener(
    quality: Optional[str] = Query(None, max_length=30, pattern=r"^[a-zA-Z\s]*$"),
    timing: Optional[str] = Query(None, max_length=30, pattern=r"^[a-zA-Z\s]*$"),
    min_score: Optional[int] = Query(None, alias="minScore", ge=0, le=100),
    max_score: Optional[int] = Query(None, alias="maxScore", ge=0, le=100),
):
    db = database.get_db()
    query = {}

    if quality:
        query["analysis.business_quality"] = quality
    if timing:
        query["analysis.timing_label"] = timing
    if min_score is not None or max_score is not None:
        score = {}
        if min_score is not None:
            score["$gte"] = min_score
        if max_score is not None:
            score["$lte"] = max_score
        query["analysis.flexbit_score"] = score

    cursor = db.stocks.find(
        query,
        {
            "_id": 0,
            "ticker": 1,
            "company_name": 1,
            "analysis.flexbit_score": 1,
            "analysis.business_quality": 1,
            "analysis.timing_label": 1,
        }
    ).sort("analysis.flexbit_score", -1)
    return await cursor.to_list(length=None)


@router.get("/stats")
async def stock_stats():
    """Counts by quality bucket, timing group and conflict flag."""
    db = database.get_db()

    total = await db.stocks.count_documents({})

    quality_counts = {}
    async for row in db.stocks.aggregate([
        {"$group": {"_id": "$analysis.business_quality", "count": {"$sum": 1}}}
    ]):
        quality_counts[row["_id"]] = row["count"]

    timing = {}
    for key, label in TIMING_GROUPS.items():
        timing[key] = await db.stocks.count_documents(
            {"analysis.timing_label": {"$regex": label, "$options": "i"}}
        )

    return {
        "total": total,
        "quality": {key: quality_counts.get(label, 0) for key, label in QUALITY_BUCKETS.items()},
        "timing": timing,
        "conflict": {
            "has_conflict": await db.stocks.count_documents({"analysis.conflict.has_conflict": True}),
            "aligned": await db.stocks.count_documents({"analysis.conflict.has_conflict": False}),
        },
    }


@router.get("/export")
async def export_stocks(user: dict = Depends(require_feature(Feature.EXPORT_DATA))):
    db = database.get_db()
    stocks = await db.stocks.find({}, EXPORT_PROJECTION).sort("ticker", 1).to_list(length=None)

    if not stocks:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No stocks found to export")

    logger.info(f"Stock export by {user.get('user_id')}: {len(stocks)} rows")
    return csv_response(stocks, "flexbit_stocks_export.csv")


@router.get("/{ticker}")
async def get_stock(ticker: str = Path(..., max_length=14)):
    ticker = ticker.upper()
    if not re.match(TICKER_PATTERN, ticker):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid ticker format")

    db = database.get_db()
    stock = await db.stocks.find_one({"ticker": ticker}, {"_id": 0})
    if not stock:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock not found")
    return stock
