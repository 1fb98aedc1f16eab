"""
Calcul pur (pas de DB, pas de Stripe) des montants d'une ligne d'achat.

Tous les montants sont des Decimal arrondis au centime au moment du calcul:
- purchase_price = cost_price × (1 + markup/100)
- profit = purchase_price − cost_price
- charity_share = profit × charity%/100, company_share = profit − charity_share
  (la somme persistée des parts est donc exactement égale au profit persisté)
- credits_earned = floor(charity_share × credits_multiplier)
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from impactly.utils.money import D, Money, round_money, floor_int

HUNDRED = Decimal("100")

@dataclass(frozen=True)
class PricingConfig:
    markup_percent: Decimal
    company_split_percent: Decimal
    charity_split_percent: Decimal
    credits_multiplier: Decimal

@dataclass(frozen=True)
class PricingBreakdown:
    face_value: Money
    cost_price: Money
    purchase_price: Money
    profit: Money
    company_share: Money
    charity_share: Money
    credits_earned: int

    def as_row(self) -> Dict[str, Any]:
        """Colonnes financières d'une ligne 'transactions' (montants sérialisés en chaînes '0.00')."""
        return {
            "product_amount": str(self.face_value),
            "purchase_price": str(self.purchase_price),
            "cost_price": str(self.cost_price),
            "profit_amount": str(self.profit),
            "company_share": str(self.company_share),
            "charity_share": str(self.charity_share),
            "credits_earned": self.credits_earned,
        }

def compute_pricing(cost_price, face_value, config: PricingConfig) -> PricingBreakdown:
    cost = round_money(cost_price)
    if cost <= 0:
        raise ValueError(f"cost_price doit être positif (reçu {cost_price!r})")

    purchase_price = round_money(cost * (1 + D(config.markup_percent) / HUNDRED))
    profit = purchase_price - cost
    charity_share = round_money(profit * D(config.charity_split_percent) / HUNDRED)
    company_share = profit - charity_share
    credits_earned = floor_int(charity_share * D(config.credits_multiplier))

    return PricingBreakdown(
        face_value=round_money(face_value),
        cost_price=cost,
        purchase_price=purchase_price,
        profit=profit,
        company_share=company_share,
        charity_share=charity_share,
        credits_earned=credits_earned,
    )
