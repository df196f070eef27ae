"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (app.state.limiter + SlowAPIMiddleware) and by
api/routes/v1/auth.py (per-route limits on signin and forgot-password).

One shared instance means one in-memory counter store. Separate Limiter
objects per module would each count on their own and never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
