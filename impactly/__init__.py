"""
Impactly: boutique de cartes cadeaux dont une part du profit finance des causes caritatives.
Ce paquet contient le pipeline de règlement (checkout, webhook Stripe, ledger, fulfillment).
"""
