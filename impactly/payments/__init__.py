"""
Feature 'payments': confirmation des paiements Stripe (webhook) et transitions d'état des achats.
"""
