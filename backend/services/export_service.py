"""CSV export of stock documents (full catalogue or a user's watchlist)."""
import csv
import io
from typing import Any, Dict, List, Optional

from fastapi.responses import StreamingResponse

# Dotted paths into the stock document, in column order
EXPORT_FIELDS = [
    "ticker",
    "company_name",
    "sector",
    "industry",
    "analysis.flexbit_score",
    "analysis.business_quality",
    "analysis.timing_label",
    "analysis.flexbit_diagnosis",
    "analysis.synthesis.description",
    "analysis.investor_profile",
    "analysis.vqsg.v",
    "analysis.vqsg.q",
    "analysis.vqsg.s",
    "analysis.vqsg.g",
    "technical.last_price",
    "technical.price_change_percent",
    "technical.signals.call",
    "technical.signals.entry_price",
    "technical.signals.tp1",
    "technical.signals.stop_loss",
]

# Projection that only loads the exported fields
EXPORT_PROJECTION = {"_id": 0, **{field: 1 for field in EXPORT_FIELDS}}


def get_path(doc: Dict[str, Any], path: str) -> Optional[Any]:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def flatten_stock(stock: Dict[str, Any]) -> Dict[str, Any]:
    row = {}
    for field in EXPORT_FIELDS:
        value = get_path(stock, field)
        row[field] = "" if value is None else value
    return row


def format_csv(stocks: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=EXPORT_FIELDS)
    writer.writeheader()
    writer.writerows(flatten_stock(stock) for stock in stocks)
    return output.getvalue()


def csv_response(stocks: List[Dict[str, Any]], filename: str) -> StreamingResponse:
    content = format_csv(stocks).encode("utf-8")
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
