"""Order identifier scheme.

Format: "<prefix>-<userId>-<epochMillis>", e.g. "flxbt-3f9c...e1-1718000000000".

The embedded user id is informational (logging and reconciliation hints).
Ownership is always taken from the stored transaction, never from the id.
"""
import os
import time
from typing import Optional

ORDER_ID_PREFIX = os.getenv("ORDER_ID_PREFIX", "flxbt")
ORDER_ID_SEPARATOR = "-"


class InvalidOrderIdError(ValueError):
    """Order id does not split into exactly three non-empty fields."""


def build_order_id(user_id: str, now_ms: Optional[int] = None) -> str:
    if ORDER_ID_SEPARATOR in user_id:
        raise InvalidOrderIdError(f"user id must not contain '{ORDER_ID_SEPARATOR}': {user_id}")
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return ORDER_ID_SEPARATOR.join([ORDER_ID_PREFIX, user_id, str(now_ms)])


def parse_order_user_id(order_id: str) -> str:
    """Return the user id segment of an order id."""
    parts = (order_id or "").split(ORDER_ID_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise InvalidOrderIdError(f"Invalid order id format: {order_id}")
    return parts[1]
