"""MySQL -> MongoDB import of the analysis tables.

Datasets:
- stocks: daily_fundamentals_update -> stocks (upsert by ticker), daily cron
- news:   news                      -> news   (upsert by id)
- faqs:   wiki_faq_news (active)    -> faqs   (upsert by question)
- wikis:  wiki                      -> wikis  (upsert by id)

Rows are read with a synchronous SQLAlchemy engine in a worker thread and
written with Motor. A failing row is counted and logged, it never aborts
the run.
"""
import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote_plus

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from database import database

logger = logging.getLogger(__name__)

# "3. Uptrend" -> "Uptrend"
_ORDINAL_PREFIX = re.compile(r"^\d+\.\s*")

CONFLICT_YES = "⚠️ Ya"


# ============================================================================
# Value parsing
# ============================================================================

def to_float(value: Any) -> Optional[float]:
    """Numeric column to float; blanks and junk become None."""
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    value = str(value).strip()
    if not value:
        return None
    try:
        return float(Decimal(value))
    except InvalidOperation:
        return None


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    return None if number is None else int(number)


def strip_ordinal(label: Any) -> Optional[str]:
    if not label:
        return None
    return _ORDINAL_PREFIX.sub("", str(label))


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _percent(value: Any) -> Optional[float]:
    # Stored as a fraction (0.0123 -> 1.23%)
    number = to_float(value)
    return None if number is None else round(number * 100, 6)


# ============================================================================
# Row transforms
# ============================================================================

def transform_stock(row: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    updated_at = to_datetime(row.get("updated_at")) or now
    conflict_type = row.get("conflict_type")

    return {
        "ticker": str(row["ticker"]).strip().upper(),
        "company_name": row.get("company_name"),
        "sector": row.get("sector"),
        "industry": row.get("industry"),
        "logo": row.get("logo"),
        "is_financial_sector": to_int(row.get("is_financial_sector")) == 1,
        "financials": {
            "dividend_yield": to_float(row.get("dividend_yield")),
            "last_updated": updated_at,
        },
        "analysis": {
            "flexbit_score": to_float(row.get("flexbit_score")),
            "business_quality": row.get("business_quality_label"),
            "timing_score": to_float(row.get("timing_score")),
            "timing_label": row.get("timing_label"),
            "trend": strip_ordinal(row.get("tech_trend")),
            "conflict": {
                "has_conflict": row.get("has_conflict") == CONFLICT_YES,
                "type": conflict_type or "none",
                "message": f"Conflict: {conflict_type}" if conflict_type else "",
            },
            "investor_profile": row.get("investor_match"),
            "investor_avoid": row.get("investor_avoid"),
            "vqsg": {
                "v": to_float(row.get("v_score")),
                "q": to_float(row.get("q_score")),
                "s": to_float(row.get("s_score")),
                "g": to_float(row.get("g_score")),
            },
            "stock_profile": {
                "emoji": row.get("stock_profile_emoji"),
                "name": row.get("stock_profile_name"),
                "description": row.get("stock_profile_description"),
                "risk": row.get("stock_profile_risk"),
            },
            "flexbit_diagnosis": row.get("flexbit_diagnosis"),
            "flexbit_category": row.get("flexbit_category"),
            "flexbit_strongest": row.get("flexbit_strongest"),
            "flexbit_weakest": row.get("flexbit_weakest"),
            "flexbit_fundamental_signal": row.get("flexbit_fundamental_signal"),
            "synthesis": {
                "profile": row.get("synthesis_profile"),
                "description": row.get("synthesis_description"),
                "category": row.get("synthesis_category"),
                "alignment": row.get("synthesis_alignment"),
            },
            "data_confidence": row.get("data_confidence"),
            "valuation_confidence": row.get("valuation_confidence"),
            "quality_confidence": row.get("quality_confidence"),
            "safety_confidence": row.get("safety_confidence"),
            "growth_confidence": row.get("growth_confidence"),
            "safety_note": row.get("safety_note"),
            "quality_flags": row.get("quality_flags"),
            "analyst_notes": row.get("analyst_notes"),
        },
        "technical": {
            "last_price": to_float(row.get("price")),
            "price_change": to_float(row.get("price_change")),
            "price_change_percent": _percent(row.get("price_change_pct")),
            "volume": to_float(row.get("volume")),
            "volume_category": row.get("volume_category"),
            "week52_high": to_float(row.get("week_52_high")),
            "week52_low": to_float(row.get("week_52_low")),
            "position_in_52week_range": to_float(row.get("position_in_52week_range")),
            "trend": strip_ordinal(row.get("tech_trend")),
            "trend_strength": row.get("trend_strength"),
            "last_updated": updated_at,
            "signals": {
                "call": strip_ordinal(row.get("tech_signal")),
                "entry_price": to_float(row.get("tech_entry_conservative")),
                "tp1": to_float(row.get("tech_tp1")),
                "tp2": to_float(row.get("tech_tp2")),
                "stop_loss": to_float(row.get("tech_stop_loss")),
                "rsi": to_float(row.get("tech_rsi")),
                "rr_conservative": to_float(row.get("tech_rr_conservative")),
            },
        },
        "dividend": {
            "yield": to_float(row.get("dividend_yield")),
            "payout": to_float(row.get("dividend_payout")),
            "ex_date": None if row.get("dividend_ex_date") is None else str(row.get("dividend_ex_date")),
        },
        "analyst": {
            "recommendation": row.get("analyst_recommendation"),
            "upside_pct": to_float(row.get("analyst_upside_pct")),
            "count": to_int(row.get("analyst_count")),
        },
        "report_date": to_datetime(row.get("report_date")),
        "updated_at": now,
    }


def transform_news(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": to_int(row["id"]),
        "headline": row.get("headline"),
        "content": row.get("content"),
        "date": to_datetime(row.get("date")),
        "image": row.get("image"),
    }


def transform_faq(row: Dict[str, Any]) -> Dict[str, Any]:
    doc = {
        "question": row["question"],
        "answer": row.get("answer"),
        "category": row.get("category"),
        "is_active": to_int(row.get("is_active")) == 1,
    }
    if row.get("note"):
        doc["note"] = row["note"]
    return doc


def transform_wiki(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": to_int(row["id"]),
        "field_name": row.get("field_name"),
        "field_category": row.get("field_category"),
        "what_is_it": row.get("what_is_it"),
        "score_min": to_float(row.get("score_min")),
        "score_max": to_float(row.get("score_max")),
        "range_label": row.get("range_label"),
        "range_emoji": row.get("range_emoji"),
        "range_description": row.get("range_description"),
        "actionable_insight": row.get("actionable_insight"),
        "display_order": to_int(row.get("display_order")),
    }


@dataclass(frozen=True)
class Dataset:
    name: str
    collection: str
    query: str
    key: str
    transform: Callable[[Dict[str, Any]], Dict[str, Any]]


DATASETS: Dict[str, Dataset] = {
    "stocks": Dataset("stocks", "stocks", "SELECT * FROM daily_fundamentals_update", "ticker", transform_stock),
    "news": Dataset("news", "news", "SELECT * FROM news ORDER BY date DESC", "id", transform_news),
    "faqs": Dataset("faqs", "faqs", "SELECT * FROM wiki_faq_news WHERE is_active = 1", "question", transform_faq),
    "wikis": Dataset("wikis", "wikis", "SELECT * FROM wiki ORDER BY display_order ASC", "id", transform_wiki),
}


# ============================================================================
# MySQL source
# ============================================================================

def mysql_url() -> str:
    explicit = (os.getenv("MYSQL_URL") or "").strip()
    if explicit:
        return explicit
    user = quote_plus(os.getenv("MYSQL_USER", "root"))
    password = quote_plus(os.getenv("MYSQL_PASSWORD", ""))
    host = os.getenv("MYSQL_HOST", "localhost")
    name = os.getenv("MYSQL_DATABASE", "flexbit")
    return f"mysql+pymysql://{user}:{password}@{host}/{name}?charset=utf8mb4"


def get_engine() -> Engine:
    return create_engine(mysql_url(), pool_pre_ping=True)


def fetch_rows(engine: Engine, query: str) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        result = conn.execute(text(query))
        return [dict(row) for row in result.mappings()]


# ============================================================================
# Import
# ============================================================================

async def upsert_documents(db, dataset: Dataset, rows: List[Dict[str, Any]]) -> Dict[str, int]:
    collection = db[dataset.collection]
    success = 0
    errors = 0
    for row in rows:
        try:
            doc = dataset.transform(row)
            await collection.update_one({dataset.key: doc[dataset.key]}, {"$set": doc}, upsert=True)
            success += 1
        except Exception as e:
            errors += 1
            logger.error(f"Import {dataset.name}: row {row.get(dataset.key)} failed - {e}")
    return {"success": success, "errors": errors}


async def run_import(name: str, db=None, engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Import one dataset. Returns {"success", "errors", "total", "duration"}.

    Raises on connection failures (MySQL or MongoDB); row failures are counted.
    """
    if name not in DATASETS:
        raise ValueError(f"Unknown dataset: {name}")
    dataset = DATASETS[name]
    db = db if db is not None else database.get_db()
    owns_engine = engine is None
    engine = engine or get_engine()

    started = time.monotonic()
    logger.info(f"Import {name}: starting")
    try:
        rows = await asyncio.to_thread(fetch_rows, engine, dataset.query)
        logger.info(f"Import {name}: {len(rows)} rows fetched from MySQL")
        counts = await upsert_documents(db, dataset, rows)
    finally:
        if owns_engine:
            engine.dispose()

    result = {
        **counts,
        "total": len(rows),
        "duration": round(time.monotonic() - started, 2),
    }
    logger.info(
        f"Import {name}: complete success={result['success']} errors={result['errors']} "
        f"total={result['total']} duration={result['duration']}s"
    )
    return result
