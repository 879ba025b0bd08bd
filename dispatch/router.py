"""
DISPATCH App - Event Router

Single entry point for inbound frames: `handle(connection_id, raw)` decodes
a JSON frame, dispatches on its `type` to the registry, presence tracker and
ledger, and turns their results into outbound frames.

Frames from one connection are handled in order; frames from different
connections interleave on the event loop. Ledger transitions are
synchronous, so the await points below never split a check from its set.
"""

import asyncio
import json
import logging
import random
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from dispatch import events
from dispatch.background import BackgroundTasks
from dispatch.feed import SyntheticDeliveryFeed
from dispatch.identity import resolve_identity
from dispatch.ledger import DeliveryLedger
from dispatch.models import Connection, DeliveryStatus, PROGRESS_SEQUENCE, Role, RiderStatus
from dispatch.presence import PresenceTracker
from dispatch.registry import ConnectionRegistry, admins, everyone
from dispatch.serializers import AuthFrameSerializer

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


class EventRouter:
    """
    Decodes frames and drives the dispatch components.

    Background pushes (staggered offers, progress ticks, route
    optimisation acks) are spawned on `tasks`.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        presence: PresenceTracker,
        ledger: DeliveryLedger,
        tasks: Optional[BackgroundTasks] = None,
        feed: Optional[SyntheticDeliveryFeed] = None,
        feed_batch: int = 3,
        offer_stagger: float = 5.0,
        max_offers: Optional[int] = 10,
        progress_interval: float = 10,
        optimize_delay: float = 2.0,
        verify_tokens: bool = False,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.registry = registry
        self.presence = presence
        self.ledger = ledger
        self.tasks = tasks if tasks is not None else BackgroundTasks()
        self.feed = feed
        self.feed_batch = feed_batch
        self.offer_stagger = offer_stagger
        self.max_offers = max_offers
        self.progress_interval = progress_interval
        self.optimize_delay = optimize_delay
        self.verify_tokens = verify_tokens
        self.clock = clock
        self.rng = rng or random.Random()

        # type -> (handler, required role or None for any connection)
        self._handlers: Dict[str, Tuple[Handler, Optional[str]]] = {
            'rider_auth': (self._on_rider_auth, None),
            'admin_auth': (self._on_admin_auth, None),
            'status_change': (self._on_status_change, Role.RIDER),
            'location_update': (self._on_location_update, Role.RIDER),
            'heartbeat': (self._on_heartbeat, Role.RIDER),
            'accept_delivery': (self._on_accept_delivery, Role.RIDER),
            'complete_delivery': (self._on_complete_delivery, Role.RIDER),
            'report_issue': (self._on_report_issue, Role.RIDER),
            'emergency_stop': (self._on_emergency_stop, Role.RIDER),
            'emergency_acknowledged': (self._on_emergency_acknowledged, Role.RIDER),
            'optimize_routes': (self._on_optimize_routes, None),
            'request_location': (self._on_request_location, Role.ADMIN),
            'cancel_delivery': (self._on_cancel_delivery, Role.ADMIN),
            'product_stock_changed': (self._on_product_stock_changed, Role.ADMIN),
            'inventory_updated': (self._on_inventory_updated, Role.ADMIN),
            'ping': (self._on_ping, None),
        }

    # ============================================
    # Entry point
    # ============================================

    @staticmethod
    def decode(raw: Any) -> Optional[Dict[str, Any]]:
        """Parse a raw frame. Returns None for anything that is not a typed object."""
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode('utf-8', errors='replace')
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                logger.warning(f"[ROUTER] Error parsing frame: {e}")
                return None

        if not isinstance(raw, dict):
            logger.warning(f"[ROUTER] Dropping non-object frame: {type(raw).__name__}")
            return None

        message_type = raw.get('type')
        if not isinstance(message_type, str) or not message_type:
            logger.warning("[ROUTER] Dropping frame without a type")
            return None

        return raw

    async def handle(self, connection_id: str, raw: Any) -> None:
        """
        Process one inbound frame.

        Never raises: malformed or unknown frames are logged and dropped,
        and any failure inside a handler is contained to this frame.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.warning(f"[ROUTER] Frame from unregistered connection {connection_id[:8]}")
            return

        frame = self.decode(raw)
        if frame is None:
            return

        message_type = frame['type']
        entry = self._handlers.get(message_type)
        if entry is None:
            logger.info(f"[ROUTER] Unknown message type: {message_type}")
            return

        handler, required_role = entry
        self.registry.touch(connection_id)

        try:
            if required_role is not None and connection.role != required_role:
                await self.registry.send_to_connection(
                    connection_id,
                    events.error(f"not authenticated as {str(required_role)}", message_type),
                )
                return
            logger.debug(f"[ROUTER] {message_type} from {connection.identity or connection_id[:8]}")
            await handler(connection, frame)
        except Exception:
            logger.exception(
                f"[ROUTER] Handler for {message_type} failed on connection {connection_id[:8]}"
            )

    # ============================================
    # Authentication
    # ============================================

    async def _on_rider_auth(self, connection: Connection, frame: Dict[str, Any]) -> None:
        credentials = await self._read_auth_frame(connection, frame, 'rider_auth')
        if credentials is None:
            return

        resolved = resolve_identity(
            credentials.get('riderId'), credentials.get('token'), Role.RIDER, self.verify_tokens
        )
        if not resolved:
            await self._reply_error(connection, resolved.reason, 'rider_auth')
            return

        rider_id = self.presence.authenticate(resolved.value)
        await self._bind(connection, Role.RIDER, rider_id)

        session = self.presence.get(rider_id)
        await self.registry.send_to_connection(
            connection.connection_id, events.auth_success(rider_id, session.status)
        )

    async def _on_admin_auth(self, connection: Connection, frame: Dict[str, Any]) -> None:
        credentials = await self._read_auth_frame(connection, frame, 'admin_auth')
        if credentials is None:
            return

        resolved = resolve_identity(
            credentials.get('adminId'), credentials.get('token'), Role.ADMIN, self.verify_tokens
        )
        if not resolved:
            await self._reply_error(connection, resolved.reason, 'admin_auth')
            return

        admin_id = resolved.value or f"admin_{uuid.uuid4().hex[:12]}"
        await self._bind(connection, Role.ADMIN, admin_id)
        logger.info(f"[ROUTER] Admin {admin_id} authenticated")

        await self.registry.send_to_connection(
            connection.connection_id, events.admin_auth_success(admin_id)
        )

    async def _read_auth_frame(
        self, connection: Connection, frame: Dict[str, Any], request_type: str
    ) -> Optional[Dict[str, Any]]:
        """Validated auth fields, or None after telling the client why not."""
        serializer = AuthFrameSerializer(data=frame)
        if not serializer.is_valid():
            logger.warning(f"[ROUTER] Rejected {request_type}: {serializer.errors}")
            await self._reply_error(connection, 'invalid identity', request_type)
            return None
        return serializer.validated_data

    async def _bind(self, connection: Connection, role: str, identity: str) -> None:
        # A rider switching identity on the same socket leaves the old session behind
        previous_rider = connection.identity if connection.is_rider else None

        bound = self.registry.bind_identity(connection.connection_id, role, identity)
        if bound.value is not None:
            await self.registry.close(bound.value)

        if previous_rider and (role != Role.RIDER or previous_rider != identity):
            self.presence.disconnect(previous_rider)

    # ============================================
    # Presence
    # ============================================

    async def _on_status_change(self, connection: Connection, frame: Dict[str, Any]) -> None:
        rider_id = connection.identity
        result = self.presence.set_status(rider_id, frame.get('status'))
        if not result:
            await self._reply_error(connection, result.reason, 'status_change')
            return

        session = result.value
        now = self.clock()
        await self.registry.send_to_connection(
            connection.connection_id, events.status_update(session.status, now)
        )
        await self.registry.broadcast(
            admins, events.rider_status_change(rider_id, session.status, now)
        )

        if session.status == RiderStatus.ONLINE:
            self.offer_available(rider_id)

    async def _on_location_update(self, connection: Connection, frame: Dict[str, Any]) -> None:
        rider_id = connection.identity
        result = self.presence.update_location(rider_id, frame.get('location'))
        if not result:
            # Malformed fixes are dropped without telling the rider
            return

        await self.registry.broadcast(
            admins, events.rider_location_update(rider_id, result.value.to_dict())
        )

    async def _on_heartbeat(self, connection: Connection, frame: Dict[str, Any]) -> None:
        self.presence.heartbeat(connection.identity)

    # ============================================
    # Deliveries
    # ============================================

    def replenish(self) -> int:
        """Top the pending pool up from the synthetic feed. Returns how many were added."""
        if self.feed is None:
            return 0

        missing = self.feed_batch - len(self.ledger.pending())
        if missing <= 0:
            return 0

        added = 0
        for delivery in self.feed.generate(missing):
            if self.ledger.add(delivery):
                added += 1
        return added

    def offer_available(self, rider_id: str) -> int:
        """
        Push pending deliveries to a rider, each after a random delay.

        Nothing is reserved; the offers race against other riders.
        """
        self.replenish()
        offers = self.ledger.publish_available(rider_id, limit=self.max_offers)
        for delivery in offers:
            delay = self.rng.uniform(0, self.offer_stagger) if self.offer_stagger > 0 else 0
            self.tasks.spawn(
                self._send_offer(rider_id, delivery.delivery_id, delay),
                name=f"offer-{delivery.delivery_id}-{rider_id}",
            )

        logger.info(f"[ROUTER] Offering {len(offers)} deliveries to rider {rider_id}")
        return len(offers)

    async def _send_offer(self, rider_id: str, delivery_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        delivery = self.ledger.get(delivery_id)
        if delivery is None or delivery.status != DeliveryStatus.PENDING:
            return
        # The rider may have taken another delivery during the stagger
        if self.ledger.active_for(rider_id) is not None:
            return
        await self.registry.send(rider_id, events.new_delivery(delivery))

    async def _on_accept_delivery(self, connection: Connection, frame: Dict[str, Any]) -> None:
        rider_id = connection.identity
        delivery_id = frame.get('deliveryId')
        if not delivery_id:
            await self.registry.send_to_connection(
                connection.connection_id,
                events.delivery_rejected(None, 'deliveryId is required'),
            )
            return

        result = self.ledger.accept(str(delivery_id), rider_id)
        if not result:
            await self.registry.send_to_connection(
                connection.connection_id,
                events.delivery_rejected(delivery_id, result.reason),
            )
            return

        delivery = result.value
        frame_out = events.delivery_accepted(delivery)
        await self.registry.send_to_connection(connection.connection_id, frame_out)
        await self.registry.broadcast(admins, frame_out)

        self.tasks.spawn(
            self._run_progress(delivery.delivery_id),
            name=f"progress-{delivery.delivery_id}",
        )

    async def _run_progress(self, delivery_id: str) -> None:
        """Walk an accepted delivery through picked_up, out_for_delivery, arrived."""
        for _ in PROGRESS_SEQUENCE:
            await asyncio.sleep(self.progress_interval)
            result = self.ledger.progress_tick(delivery_id)
            if not result:
                return
            delivery = result.value
            await self.registry.send(
                delivery.rider_id, events.delivery_update(delivery, self.clock())
            )

    async def _on_complete_delivery(self, connection: Connection, frame: Dict[str, Any]) -> None:
        rider_id = connection.identity
        delivery_id = frame.get('deliveryId')
        result = self.ledger.complete(str(delivery_id), rider_id) if delivery_id else None
        if not result:
            reason = result.reason if result is not None else 'deliveryId is required'
            frame_out = events.error(reason, 'complete_delivery')
            frame_out['deliveryId'] = delivery_id
            await self.registry.send_to_connection(connection.connection_id, frame_out)
            return

        delivery = result.value
        await self.registry.send_to_connection(
            connection.connection_id, events.delivery_completed(delivery)
        )
        await self.registry.broadcast(admins, events.delivery_completed_admin(delivery))

    async def _on_cancel_delivery(self, connection: Connection, frame: Dict[str, Any]) -> None:
        delivery_id = frame.get('deliveryId')
        if not delivery_id:
            await self._reply_error(connection, 'deliveryId is required', 'cancel_delivery')
            return

        await self.cancel_delivery(
            str(delivery_id), frame.get('reason') or '', reply_to=connection
        )

    async def cancel_delivery(
        self, delivery_id: str, reason: str = '', reply_to: Optional[Connection] = None
    ):
        """Cancel on behalf of order management and notify admins and the rider."""
        result = self.ledger.cancel(delivery_id, reason)
        if not result:
            if reply_to is not None:
                await self._reply_error(reply_to, result.reason, 'cancel_delivery')
            return result

        delivery = result.value
        frame_out = events.delivery_cancelled(delivery)
        await self.registry.broadcast(admins, frame_out)
        if delivery.rider_id:
            await self.registry.send(delivery.rider_id, frame_out)
        return result

    # ============================================
    # Incidents & misc
    # ============================================

    async def _on_report_issue(self, connection: Connection, frame: Dict[str, Any]) -> None:
        logger.warning(f"[ROUTER] Issue reported by rider {connection.identity}: {frame.get('issue')}")
        await self.registry.broadcast(
            admins,
            events.issue_reported(connection.identity, frame.get('issue'), frame.get('location')),
        )

    async def _on_emergency_stop(self, connection: Connection, frame: Dict[str, Any]) -> None:
        logger.warning(f"[ROUTER] EMERGENCY STOP activated by rider {connection.identity}")
        delivered = await self.registry.broadcast(
            admins, events.emergency_alert(connection.identity, frame.get('location'))
        )
        if delivered == 0:
            logger.error(f"[ROUTER] Emergency from {connection.identity} reached no admin")

    async def _on_emergency_acknowledged(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self.registry.broadcast(admins, events.emergency_acknowledged(connection.identity))

    async def _on_optimize_routes(self, connection: Connection, frame: Dict[str, Any]) -> None:
        self.tasks.spawn(
            self._ack_optimize(connection.connection_id),
            name=f"optimize-{connection.connection_id[:8]}",
        )

    async def _ack_optimize(self, connection_id: str) -> None:
        # Placeholder latency for a routing optimiser that does not exist yet
        await asyncio.sleep(self.optimize_delay)
        await self.registry.send_to_connection(connection_id, events.routes_optimized())

    async def _on_request_location(self, connection: Connection, frame: Dict[str, Any]) -> None:
        rider_id = frame.get('riderId')
        if not rider_id:
            await self._reply_error(connection, 'riderId is required', 'request_location')
            return

        sent = await self.registry.send(rider_id, events.location_request(connection.identity))
        if not sent:
            await self._reply_error(connection, f"rider {rider_id} is not connected", 'request_location')

    async def _on_product_stock_changed(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self.registry.broadcast(
            everyone,
            events.product_stock_changed(
                frame.get('productId'), frame.get('newStock'), frame.get('adjustment')
            ),
        )
        logger.info(f"[ROUTER] Product {frame.get('productId')} stock changed to {frame.get('newStock')}")

    async def _on_inventory_updated(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self.registry.broadcast(everyone, events.inventory_updated(frame.get('inventory')))

    async def _on_ping(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self.registry.send_to_connection(connection.connection_id, events.pong())

    async def _reply_error(self, connection: Connection, message: str, request_type: str) -> None:
        await self.registry.send_to_connection(
            connection.connection_id, events.error(message, request_type)
        )
