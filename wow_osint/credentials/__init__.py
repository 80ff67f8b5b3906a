"""
API credential pool.

Modules:
    auth    OAuth2 client-credentials token exchange.
    pool    selection, error telemetry, circuit-breaker sweep, key import.
"""
