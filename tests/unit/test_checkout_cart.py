from decimal import Decimal

from impactly.checkout.cart import parse_cart, to_line_item

def test_parse_cart_normalizes_lines():
    lines = parse_cart([
        {"productId": "7", "denomination": "25", "quantity": "2", "productName": "Steam", "currency": "EUR"},
    ])
    assert len(lines) == 1
    assert lines[0].product_id == 7
    assert lines[0].denomination == Decimal("25.00")
    assert lines[0].quantity == 2
    assert lines[0].product_name == "Steam"

def test_line_item_amount_in_cents():
    item = to_line_item(
        name="Steam Gift Card", description="EUR 25.00", unit_price=Decimal("26.25"),
        quantity=2, currency="usd", images=["a.png", "b.png"],
    )
    assert item["quantity"] == 2
    assert item["price_data"]["unit_amount"] == 2625
    assert item["price_data"]["currency"] == "usd"
    assert item["price_data"]["product_data"]["images"] == ["a.png"]
