"""
DISPATCH App - Dispatch Server

Composition root of the real-time layer. Owns the connection registry,
presence tracker, delivery ledger and event router for the lifetime of the
process, drives the connection lifecycle for the WebSocket consumers and
runs the periodic maintenance:

- stale rider sweep (sessions and their connections)
- synthetic delivery top-up (demo feed)
- earnings push to online riders
"""

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

from dispatch import events
from dispatch.background import BackgroundTasks
from dispatch.conf import DispatchSettings
from dispatch.feed import SyntheticDeliveryFeed
from dispatch.ledger import DeliveryLedger
from dispatch.models import Delivery, Role, RiderStatus
from dispatch.presence import PresenceTracker
from dispatch.registry import ConnectionRegistry, admins
from dispatch.results import Result
from dispatch.router import EventRouter
from dispatch.transport import ChannelLayerTransport

logger = logging.getLogger(__name__)


class DispatchServer:
    """Wires the dispatch components together and owns their lifecycle."""

    def __init__(
        self,
        transport=None,
        config: Optional[DispatchSettings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or DispatchSettings()
        self.clock = clock
        self.rng = rng or random.Random()
        self.tasks = BackgroundTasks()

        self.registry = ConnectionRegistry(transport or ChannelLayerTransport(), clock=clock)
        self.presence = PresenceTracker(clock=clock, stale_timeout=self.config.stale_timeout)
        self.ledger = DeliveryLedger(clock=clock, rng=self.rng, archive_size=self.config.archive_size)
        self.feed = (
            SyntheticDeliveryFeed(clock=clock, rng=self.rng)
            if self.config.synthetic_deliveries else None
        )
        self.router = EventRouter(
            self.registry,
            self.presence,
            self.ledger,
            tasks=self.tasks,
            feed=self.feed,
            feed_batch=self.config.synthetic_batch,
            offer_stagger=self.config.offer_stagger,
            max_offers=self.config.max_offers,
            progress_interval=self.config.progress_interval,
            optimize_delay=self.config.optimize_delay,
            verify_tokens=self.config.verify_tokens,
            clock=clock,
            rng=self.rng,
        )
        self._maintenance: Optional[asyncio.Task] = None

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def running(self) -> bool:
        return self._maintenance is not None and not self._maintenance.done()

    def start(self) -> None:
        """Start the maintenance loop on the running event loop (idempotent)."""
        if self.running:
            return
        # Kept apart from self.tasks so draining pushes never waits on the loop
        self._maintenance = asyncio.get_running_loop().create_task(
            self._maintenance_loop(), name='dispatch-maintenance'
        )
        logger.info(
            f"[DISPATCH] Server started (maintenance every {self.config.maintenance_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel maintenance and every pending background push."""
        maintenance, self._maintenance = self._maintenance, None
        if maintenance is not None and not maintenance.done():
            maintenance.cancel()
            await asyncio.gather(maintenance, return_exceptions=True)
        await self.tasks.cancel_all()
        logger.info("[DISPATCH] Server stopped")

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.maintenance_interval)
            try:
                await self.run_maintenance()
            except Exception:
                logger.exception("[DISPATCH] Maintenance pass failed")

    async def run_maintenance(self, now: Optional[float] = None) -> Dict[str, Any]:
        """One maintenance pass: sweep, top up, push earnings."""
        evicted = await self.sweep_stale(now)
        generated = self.router.replenish()
        pushed = await self.push_earnings()
        return {'evicted': evicted, 'generated': generated, 'earnings_pushed': pushed}

    # ============================================
    # Connections
    # ============================================

    async def connect(self, handle: Any) -> str:
        """Register a freshly accepted transport and greet it."""
        self.start()
        connection_id = self.registry.register(handle)
        await self.registry.send_to_connection(connection_id, events.connected())
        logger.info(f"[WS] New connection {connection_id[:8]}")
        return connection_id

    async def receive(self, connection_id: str, raw: Any) -> None:
        await self.router.handle(connection_id, raw)

    async def disconnect(self, connection_id: str) -> None:
        """
        Forget a closed transport.

        A rider's presence is dropped, but any delivery they hold stays
        assigned to them.
        """
        connection = self.registry.unregister(connection_id)
        if connection is None:
            return

        if connection.is_rider:
            self.presence.disconnect(connection.identity)
            held = self.ledger.active_for(connection.identity)
            if held is not None:
                logger.info(
                    f"[WS] Rider {connection.identity} dropped while holding "
                    f"{held.delivery_id} ({held.status})"
                )
        logger.info(
            f"[WS] Connection {connection_id[:8]} closed "
            f"({connection.role} {connection.identity or '-'})"
        )

    # ============================================
    # Maintenance jobs
    # ============================================

    async def sweep_stale(self, now: Optional[float] = None) -> List[str]:
        """Evict riders that stopped reporting, along with their sockets."""
        evicted = self.presence.sweep_stale(now=now)
        for rider_id in evicted:
            connection = self.registry.evict_identity(Role.RIDER, rider_id)
            if connection is not None:
                await self.registry.close(connection)
        if evicted:
            logger.info(f"[DISPATCH] Swept {len(evicted)} inactive riders: {', '.join(map(str, evicted))}")
        return evicted

    async def push_earnings(self) -> int:
        """
        Send an earnings summary to every online rider.

        Figures are random placeholders until settlement data is wired in.
        """
        pushed = 0
        for rider_id in self.presence.riders_with_status(RiderStatus.ONLINE):
            earnings = {
                'today': self.rng.randint(800, 1299),
                'week': self.rng.randint(5000, 7999),
                'month': self.rng.randint(20000, 31999),
            }
            if await self.registry.send(rider_id, events.earnings_update(earnings)):
                pushed += 1
        return pushed

    # ============================================
    # Collaborator API
    # ============================================

    async def submit_delivery(self, delivery: Delivery) -> Result:
        """
        Accept pending work from the order-management backend.

        Admins see the new delivery; online riders without a delivery get
        it offered straight away.
        """
        result = self.ledger.add(delivery)
        if not result:
            return result

        frame = events.new_delivery(delivery)
        await self.registry.broadcast(admins, frame)
        for rider_id in self.presence.riders_with_status(RiderStatus.ONLINE):
            if self.ledger.active_for(rider_id) is None:
                await self.registry.send(rider_id, frame)
        return result

    async def cancel_delivery(self, delivery_id: str, reason: str = '') -> Result:
        return await self.router.cancel_delivery(delivery_id, reason)

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view for the admin dashboard."""
        return {
            'riders': self.presence.snapshot(),
            'deliveries': self.ledger.snapshot(),
            'connections': self.registry.count_by_role(),
            'timestamp': int(self.clock() * 1000),
        }


# ============================================
# Process-wide instance
# ============================================

_server: Optional[DispatchServer] = None


def get_dispatch_server() -> DispatchServer:
    """The dispatch server bound to this process, created on first use."""
    global _server
    if _server is None:
        _server = DispatchServer(config=DispatchSettings.from_django())
    return _server


async def reset_dispatch_server() -> None:
    """Stop and discard the process-wide server (tests, reloads)."""
    global _server
    if _server is not None:
        await _server.stop()
    _server = None
