"""
Request rate limiting (slowapi)

The limiter is attached to app.state by create_app(); routes decorate
their write endpoints with @limiter.limit(...). Limits are keyed by
client address.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

APPLY_LIMIT = "5/minute"
TRADE_LIMIT = "30/minute"
WAITLIST_LIMIT = "5/minute"
