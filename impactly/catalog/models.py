"""
Représentations normalisées des réponses Reloadly.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from impactly.errors import InvalidDenomination
from impactly.utils.money import D, Money, round_money

@dataclass(frozen=True)
class CatalogProduct:
    product_id: int
    product_name: str
    brand_name: str
    recipient_currency: str
    # valeurs faciales (devise destinataire) et coûts (devise émetteur), alignés par index
    recipient_denominations: List[Money]
    sender_denominations: List[Money]
    logo_urls: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CatalogProduct":
        brand = data.get("brand") or {}
        return cls(
            product_id=int(data.get("productId") or 0),
            product_name=str(data.get("productName") or ""),
            brand_name=str(brand.get("brandName") or data.get("productName") or ""),
            recipient_currency=str(data.get("recipientCurrencyCode") or ""),
            recipient_denominations=[round_money(v) for v in (data.get("fixedRecipientDenominations") or [])],
            sender_denominations=[round_money(v) for v in (data.get("fixedSenderDenominations") or [])],
            logo_urls=list(data.get("logoUrls") or []),
        )

    def cost_price_for(self, denomination) -> Money:
        """
        Prix de revient (ce que paie la boutique) pour la valeur faciale choisie.
        - La valeur doit figurer dans la liste officielle du catalogue, jamais celle du client.
        """
        wanted = round_money(denomination)
        try:
            index = self.recipient_denominations.index(wanted)
        except ValueError:
            raise InvalidDenomination(f"Valeur faciale {wanted} non proposée pour {self.brand_name or self.product_id}")
        if index >= len(self.sender_denominations) or self.sender_denominations[index] <= 0:
            raise InvalidDenomination(f"Prix de revient indisponible pour {self.brand_name or self.product_id} ({wanted})")
        return self.sender_denominations[index]

@dataclass(frozen=True)
class IssuedOrder:
    transaction_id: Optional[int]
    status: str
    code: Optional[str] = None
    amount: Optional[Money] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any], code: Optional[str] = None) -> "IssuedOrder":
        amount = data.get("amount")
        return cls(
            transaction_id=data.get("transactionId"),
            status=str(data.get("status") or ""),
            code=code,
            amount=D(amount) if amount is not None else None,
        )
