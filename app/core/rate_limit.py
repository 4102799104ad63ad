"""
Rate limiting for administration routes.

Callers are keyed by their Authorization header, so each token gets its own
budget. The limit is read from config on every request.
"""
from slowapi import Limiter

from app.core import config
from app.features.users.dependencies import get_authorization_header


limiter = Limiter(key_func=get_authorization_header)


def admin_rate_limit() -> str:
    return config.ADMIN_RATE_LIMIT
