"""
Registre central des routers (API v1, health).
- API v1: checkout, payments (webhook + reconcile), orders (fulfillment interne), impact
- Health: health_router
"""
from fastapi import FastAPI
from impactly.checkout import views as checkout_views
from impactly.payments import views as payments_views
from impactly.fulfillment import views as fulfillment_views
from impactly.ledger import views as ledger_views
from impactly.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    """
    Agrège tous les routers de l’application.
    - L’ordre n’a pas d’impact sauf conflits de chemins (évités par préfixes).
    """
    # API v1
    app.include_router(checkout_views.router)
    app.include_router(payments_views.router)
    app.include_router(fulfillment_views.router)
    app.include_router(ledger_views.router)
    # Health & monitoring
    app.include_router(health_router)
