"""
Test doubles shared by the dispatch tests.
"""

import random
from typing import Any, Dict, List, Tuple

from dispatch.conf import DispatchSettings
from dispatch.models import Delivery
from dispatch.server import DispatchServer


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeTransport:
    """Records every frame instead of writing to a socket."""

    def __init__(self):
        self.sent: List[Tuple[Any, Dict[str, Any]]] = []
        self.closed: List[Tuple[Any, int]] = []
        self.broken = set()

    async def send(self, handle, message):
        if handle in self.broken:
            raise ConnectionError(f"socket {handle} is gone")
        self.sent.append((handle, message))

    async def close(self, handle, code=4001):
        self.closed.append((handle, code))

    def frames_for(self, handle) -> List[Dict[str, Any]]:
        return [message for h, message in self.sent if h == handle]

    def types_for(self, handle) -> List[str]:
        return [message['type'] for message in self.frames_for(handle)]

    def last_for(self, handle, message_type=None) -> Dict[str, Any]:
        frames = self.frames_for(handle)
        if message_type is not None:
            frames = [f for f in frames if f['type'] == message_type]
        return frames[-1] if frames else None

    def clear(self):
        self.sent.clear()
        self.closed.clear()


def make_delivery(delivery_id='D1', created_at=1_700_000_000.0, **kwargs) -> Delivery:
    fields = {
        'customer_name': 'Jane Smith',
        'address': '456 Oak Avenue, Building C, Floor 2',
        'customer_phone': '+919876543210',
        'items': [{'name': 'Fresh Milk', 'quantity': 1}],
        'total': 240,
        'distance_km': 4,
    }
    fields.update(kwargs)
    return Delivery(delivery_id=delivery_id, created_at=created_at, **fields)


def make_server(clock=None, **overrides) -> Tuple[DispatchServer, FakeTransport, FakeClock]:
    """Dispatch server with no synthetic feed and no artificial delays."""
    options = {
        'synthetic_deliveries': False,
        'offer_stagger': 0,
        'progress_interval': 0,
        'optimize_delay': 0,
        'maintenance_interval': 3600,
    }
    options.update(overrides)
    clock = clock or FakeClock()
    transport = FakeTransport()
    server = DispatchServer(
        transport=transport,
        config=DispatchSettings(**options),
        clock=clock,
        rng=random.Random(42),
    )
    return server, transport, clock
