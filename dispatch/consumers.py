"""
DISPATCH App - WebSocket Consumer for riders and admin dashboards

Clients connect to: ws://host/ws/dispatch/

Every connection starts unauthenticated and becomes a rider or an admin
with a `rider_auth` / `admin_auth` frame. Inbound frames go to the event
router; outbound frames reach the socket through the channel layer
(`outbound.frame` messages addressed to this consumer's channel name).
"""

import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

from dispatch.server import get_dispatch_server

logger = logging.getLogger(__name__)


class DispatchConsumer(AsyncWebsocketConsumer):
    """
    Transport adapter between one WebSocket and the dispatch server.

    Frames sent by riders:
    - rider_auth, status_change, location_update, heartbeat
    - accept_delivery, complete_delivery
    - report_issue, emergency_stop, emergency_acknowledged, optimize_routes

    Frames sent by admins:
    - admin_auth, request_location, cancel_delivery
    - product_stock_changed, inventory_updated
    """

    connection_id = None

    def __init__(self, *args, server=None, **kwargs):
        super().__init__(*args, **kwargs)
        # as_asgi(server=...) injects a server; otherwise the process-wide one
        self.server = server

    async def connect(self):
        if self.server is None:
            self.server = get_dispatch_server()

        await self.accept()
        self.connection_id = await self.server.connect(self.channel_name)

    async def disconnect(self, close_code):
        if self.connection_id:
            await self.server.disconnect(self.connection_id)
        logger.info(f"[WS] Socket closed (code {close_code})")

    async def receive(self, text_data=None, bytes_data=None):
        """Hand the raw frame to the router; decoding errors are its concern."""
        if not self.connection_id:
            return
        await self.server.receive(self.connection_id, text_data if text_data is not None else bytes_data)

    # ============================================
    # Channel layer handlers
    # ============================================

    async def outbound_frame(self, event):
        """Relay a frame addressed to this connection."""
        await self.send(text_data=json.dumps(event['frame']))

    async def outbound_close(self, event):
        """Close a connection whose identity was taken over or went stale."""
        logger.info(f"[WS] Closing connection {str(self.connection_id)[:8]} (code {event.get('code')})")
        # Already out of the registry; do not let disconnect() touch the new owner's presence
        self.connection_id = None
        await self.close(code=event.get('code', 4001))
