"""
Logique panier pure (pas de Stripe, pas de DB).
"""
from dataclasses import dataclass
from decimal import InvalidOperation
from typing import Any, Dict, List

from impactly.errors import EmptyCart, InvalidCartItem
from impactly.utils.money import Money, round_money, to_cents

MAX_QUANTITY_PER_LINE = 20

@dataclass(frozen=True)
class CartLine:
    product_id: int
    denomination: Money
    quantity: int
    product_name: str = ""
    brand_name: str = ""
    currency: str = ""

# module impactly.checkout.cart
def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if item.get(key) not in (None, ""):
            return item.get(key)
    return None

def parse_cart(items: Any) -> List[CartLine]:
    """
    Valide un panier brut [{productId, denomination, quantity, ...}, ...].
    - Liste absente ou vide -> EmptyCart
    - Ligne sans produit, valeur faciale non numérique, quantité hors [1, MAX] -> InvalidCartItem
    Les champs d'affichage (productName, brandName, currency) ne servent qu'au libellé.
    """
    if not isinstance(items, list) or not items:
        raise EmptyCart()
    lines: List[CartLine] = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise InvalidCartItem(f"Ligne {position} invalide")
        try:
            product_id = int(_first(item, "productId", "product_id"))
            quantity = int(_first(item, "quantity") or 0)
            denomination = round_money(_first(item, "denomination", "chosenDenomination"))
        except (TypeError, ValueError, InvalidOperation):
            raise InvalidCartItem(f"Ligne {position} invalide")
        if product_id <= 0 or denomination <= 0:
            raise InvalidCartItem(f"Ligne {position}: produit ou valeur faciale invalide")
        if quantity < 1 or quantity > MAX_QUANTITY_PER_LINE:
            raise InvalidCartItem(f"Ligne {position}: quantité invalide")
        lines.append(CartLine(
            product_id=product_id,
            denomination=denomination,
            quantity=quantity,
            product_name=str(item.get("productName") or ""),
            brand_name=str(item.get("brandName") or ""),
            currency=str(item.get("currency") or ""),
        ))
    return lines

def to_line_item(*, name: str, description: str, unit_price: Money, quantity: int, currency: str, images: List[str] | None = None) -> Dict[str, Any]:
    """Ligne Stripe 'price_data' (unit_amount en centimes)."""
    product_data: Dict[str, Any] = {"name": name}
    if description:
        product_data["description"] = description
    if images:
        product_data["images"] = images[:1]
    return {
        "quantity": quantity,
        "price_data": {
            "currency": currency,
            "unit_amount": to_cents(unit_price),
            "product_data": product_data,
        },
    }
