"""
Stock catalogue and content endpoint tests (listing filters, detail,
export gating, news pagination, FAQ/wiki filters).
"""
import pytest
from datetime import datetime, timezone


@pytest.fixture
def catalogue(memory_db):
    memory_db.stocks.docs.extend([
        {
            "ticker": "BBCA", "company_name": "Bank Central Asia", "sector": "Finance",
            "analysis": {"flexbit_score": 88, "business_quality": "Sangat Solid",
                         "timing_label": "Momentum Bagus", "conflict": {"has_conflict": False}},
            "technical": {"last_price": 9800},
        },
        {
            "ticker": "GOTO", "company_name": "GoTo Gojek Tokopedia", "sector": "Technology",
            "analysis": {"flexbit_score": 35, "business_quality": "Bermasalah",
                         "timing_label": "Hindari Dulu", "conflict": {"has_conflict": True}},
            "technical": {"last_price": 70},
        },
        {
            "ticker": "TLKM", "company_name": "Telkom Indonesia", "sector": "Telecom",
            "analysis": {"flexbit_score": 72, "business_quality": "Cukup Sehat",
                         "timing_label": "Momentum Positif", "conflict": {"has_conflict": False}},
            "technical": {"last_price": 3100},
        },
    ])
    return memory_db


class TestStockListing:
    def test_default_sort_by_score(self, client, catalogue):
        body = client.get("/api/stocks").json()
        assert [s["ticker"] for s in body["stocks"]] == ["BBCA", "TLKM", "GOTO"]
        assert body["total"] == 3
        assert body["pages"] == 1

    def test_keyword_matches_ticker_or_name(self, client, catalogue):
        body = client.get("/api/stocks", params={"keyword": "telkom"}).json()
        assert [s["ticker"] for s in body["stocks"]] == ["TLKM"]

    def test_timing_group_filter(self, client, catalogue):
        body = client.get("/api/stocks", params={"timing": "Momentum", "sort": "ticker"}).json()
        assert [s["ticker"] for s in body["stocks"]] == ["BBCA", "TLKM"]

    def test_conflict_and_quality_filters(self, client, catalogue):
        body = client.get("/api/stocks", params={"conflict": "true"}).json()
        assert [s["ticker"] for s in body["stocks"]] == ["GOTO"]
        body = client.get("/api/stocks", params={"quality": "Cukup Sehat"}).json()
        assert [s["ticker"] for s in body["stocks"]] == ["TLKM"]

    def test_pagination(self, client, catalogue):
        body = client.get("/api/stocks", params={"limit": 2, "page": 2}).json()
        assert [s["ticker"] for s in body["stocks"]] == ["GOTO"]
        assert body["pages"] == 2

    def test_invalid_sort_rejected(self, client, catalogue):
        assert client.get("/api/stocks", params={"sort": "random"}).status_code == 422

    def test_screener_score_range(self, client, catalogue):
        body = client.get("/api/stocks/screener", params={"minScore": 50, "maxScore": 80}).json()
        assert [s["ticker"] for s in body] == ["TLKM"]


class TestStockDetail:
    def test_found(self, client, catalogue):
        response = client.get("/api/stocks/bbca")
        assert response.status_code == 200
        assert response.json()["company_name"] == "Bank Central Asia"

    def test_not_found(self, client, catalogue):
        assert client.get("/api/stocks/ZZZZ").status_code == 404

    def test_invalid_ticker_format(self, client, catalogue):
        assert client.get("/api/stocks/BB-CA").status_code == 400


class TestStockExport:
    def test_requires_login(self, client, catalogue):
        assert client.get("/api/stocks/export").status_code == 401

    def test_free_user_forbidden(self, client, catalogue, user_factory, auth_headers):
        user = user_factory()
        catalogue.users.docs.append(user)
        assert client.get("/api/stocks/export", headers=auth_headers(user)).status_code == 403

    def test_pro_user_gets_csv_sorted_by_ticker(self, client, catalogue, user_factory, auth_headers):
        user = user_factory(tier="pro")
        catalogue.users.docs.append(user)
        response = client.get("/api/stocks/export", headers=auth_headers(user))
        assert response.status_code == 200
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("ticker,company_name")
        assert [line.split(",")[0] for line in lines[1:]] == ["BBCA", "GOTO", "TLKM"]


class TestContent:
    def test_news_pagination(self, client, memory_db):
        for i in range(1, 8):
            memory_db.news.docs.append({
                "id": i, "headline": f"Berita {i}", "content": "IHSG",
                "date": datetime(2025, 5, i, tzinfo=timezone.utc),
            })
        body = client.get("/api/news").json()
        assert [n["id"] for n in body["data"]] == [7, 6, 5, 4, 3, 2]
        assert body["pagination"] == {
            "current_page": 1, "total_pages": 2, "total_items": 7,
            "has_next_page": True, "has_prev_page": False,
        }
        body = client.get("/api/news", params={"page": 2}).json()
        assert [n["id"] for n in body["data"]] == [1]
        assert body["pagination"]["has_next_page"] is False

    def test_news_search(self, client, memory_db):
        memory_db.news.docs.extend([
            {"id": 1, "headline": "Dividen BBCA", "content": "", "date": None},
            {"id": 2, "headline": "IPO baru", "content": "", "date": None},
        ])
        body = client.get("/api/news", params={"search": "dividen"}).json()
        assert [n["id"] for n in body["data"]] == [1]

    def test_faq_only_active(self, client, memory_db):
        memory_db.faqs.docs.extend([
            {"question": "B?", "category": "Umum", "is_active": True},
            {"question": "A?", "category": "Umum", "is_active": True},
            {"question": "Old?", "category": "Umum", "is_active": False},
        ])
        body = client.get("/api/faq").json()
        assert [f["question"] for f in body] == ["A?", "B?"]

    def test_wiki_category_filter(self, client, memory_db):
        memory_db.wikis.docs.extend([
            {"id": 1, "field_category": "VQSG", "display_order": 2},
            {"id": 2, "field_category": "VQSG", "display_order": 1},
            {"id": 3, "field_category": "Teknikal", "display_order": 0},
        ])
        body = client.get("/api/wiki", params={"category": "VQSG"}).json()
        assert [w["id"] for w in body] == [2, 1]
