"""Read-only content imported from MySQL: news, FAQ and wiki (public)."""
from fastapi import APIRouter, Query
from typing import Optional
from database import database
import logging
import math
import re

logger = logging.getLogger(__name__)
router = APIRouter(tags=["content"])


@router.get("/api/news")
async def list_news(
    page: int = Query(1, ge=1),
    limit: int = Query(6, ge=1, le=50),
    search: Optional[str] = Query(None, max_length=100),
):
    db = database.get_db()
    query = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"headline": {"$regex": pattern, "$options": "i"}},
            {"content": {"$regex": pattern, "$options": "i"}},
        ]

    total_items = await db.news.count_documents(query)
    total_pages = math.ceil(total_items / limit)
    news = await (
        db.news.find(query, {"_id": 0})
        .sort("date", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(length=limit)
    )

    return {
        "data": news,
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total_items,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }


@router.get("/api/faq")
async def list_faqs(category: Optional[str] = Query(None, max_length=100)):
    db = database.get_db()
    query = {"is_active": True}
    if category:
        query["category"] = category
    cursor = db.faqs.find(query, {"_id": 0}).sort([("category", 1), ("question", 1)])
    return await cursor.to_list(length=None)


@router.get("/api/wiki")
async def list_wikis(category: Optional[str] = Query(None, max_length=100)):
    """Flat list ordered by display_order; the frontend groups by category."""
    db = database.get_db()
    query = {}
    if category:
        query["field_category"] = category
    cursor = db.wikis.find(query, {"_id": 0}).sort("display_order", 1)
    return await cursor.to_list(length=None)
