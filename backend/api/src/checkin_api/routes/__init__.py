"""API routes package.

Routers are organized by domain:

- checkin: lane session handshake, scan lookup, waitlist info
- payments: marking payment intents paid
- inventory: available resource counts
- auth: staff sign-in
- ws: lane event WebSocket

All routers are registered in main.py with /api prefix.
"""

from checkin_api.routes.auth import router as auth_router
from checkin_api.routes.checkin import router as checkin_router
from checkin_api.routes.inventory import router as inventory_router
from checkin_api.routes.payments import router as payments_router
from checkin_api.routes.ws import router as ws_router

__all__ = [
    "auth_router",
    "checkin_router",
    "inventory_router",
    "payments_router",
    "ws_router",
]
