"""VacunasECPro Pro entitlements API.

FastAPI backend that turns PayPal subscription state into a per-user Pro
entitlement record:
- Checkout validation (client-initiated)
- Webhook reconciliation (PayPal-initiated)
- Manual activation for cash / QR-code sales (admin secret)
- Entitlement lookups for the client app

Records live in Firestore, or in process memory for local runs and tests.
"""
