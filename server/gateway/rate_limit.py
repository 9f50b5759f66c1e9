# ─────────────────────────────────────────────────────────────────────────────
# Burst Limiter — shared slowapi instance
# ─────────────────────────────────────────────────────────────────────────────
# Extracted to its own module to avoid circular imports between main.py
# (which imports route modules) and route modules (which need the limiter).
#
# This is the outer per-minute flood guard. The hourly per-client quota is
# the QuotaGate; both key on the same client identity.
# ─────────────────────────────────────────────────────────────────────────────

from slowapi import Limiter

from gateway.config import get_settings
from gateway.identity import get_client_id

limiter = Limiter(key_func=get_client_id)

# slowapi hands dynamic limit providers no request, so the limit of the app
# built last is held here. None until an app is built: fall back to env.
_configured_limit: str | None = None


def configure_burst_limit(rate_limit: str | None) -> None:
    """Called from init_app_state with the app's own settings."""
    global _configured_limit
    _configured_limit = rate_limit


def burst_limit() -> str:
    """Current burst limit, resolved on every request."""
    return _configured_limit or get_settings().burst_rate_limit
