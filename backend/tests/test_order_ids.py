"""Order id build/parse tests."""
import pytest

from services.order_ids import build_order_id, parse_order_user_id, InvalidOrderIdError, ORDER_ID_PREFIX


def test_build_order_id_format():
    order_id = build_order_id("abc123", now_ms=1718000000000)
    assert order_id == f"{ORDER_ID_PREFIX}-abc123-1718000000000"


def test_parse_returns_user_segment():
    order_id = build_order_id("3f9cfeed", now_ms=1)
    assert parse_order_user_id(order_id) == "3f9cfeed"


def test_build_uses_current_time_when_not_given():
    prefix, user_id, millis = build_order_id("u1").split("-")
    assert prefix == ORDER_ID_PREFIX
    assert user_id == "u1"
    assert millis.isdigit() and len(millis) >= 13


def test_user_id_with_separator_is_rejected():
    with pytest.raises(InvalidOrderIdError):
        build_order_id("550e8400-e29b-41d4")


@pytest.mark.parametrize("order_id", [
    "", "flxbt", "flxbt-abc", "flxbt-abc-123-extra", "flxbt--123", "-abc-123", None,
])
def test_malformed_order_ids_raise(order_id):
    with pytest.raises(InvalidOrderIdError):
        parse_order_user_id(order_id)
