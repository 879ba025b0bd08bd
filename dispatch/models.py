"""
DISPATCH App - Domain model

The dispatch node keeps its state in memory only (no tables): these are the
status enumerations and the records owned by the registry, the presence
tracker and the delivery ledger.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.db import models


class Role(models.TextChoices):
    """Role bound to a real-time connection."""
    UNAUTHENTICATED = 'unauthenticated', 'Unauthenticated'
    RIDER = 'rider', 'Rider'
    ADMIN = 'admin', 'Admin'


class RiderStatus(models.TextChoices):
    """Rider presence status."""
    OFFLINE = 'offline', 'Offline'
    ONLINE = 'online', 'Online'
    BUSY = 'busy', 'Busy'


class DeliveryStatus(models.TextChoices):
    """Delivery lifecycle status."""
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    PICKED_UP = 'picked_up', 'Picked up'
    OUT_FOR_DELIVERY = 'out_for_delivery', 'Out for delivery'
    ARRIVED = 'arrived', 'Arrived'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


# Statuses in which a delivery is held by a rider
ACTIVE_STATUSES = frozenset({
    DeliveryStatus.ACCEPTED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.OUT_FOR_DELIVERY,
    DeliveryStatus.ARRIVED,
})

# Steps driven by the progress ticker once a delivery is accepted
PROGRESS_SEQUENCE = (
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.OUT_FOR_DELIVERY,
    DeliveryStatus.ARRIVED,
)


def to_millis(timestamp: Optional[float]) -> Optional[int]:
    """Epoch seconds to the epoch milliseconds used on the wire."""
    if timestamp is None:
        return None
    return int(timestamp * 1000)


@dataclass
class Connection:
    """One live WebSocket channel and the identity bound to it."""
    connection_id: str
    handle: Any
    connected_at: float
    last_activity: float
    role: str = Role.UNAUTHENTICATED
    identity: Optional[str] = None

    @property
    def is_rider(self) -> bool:
        return self.role == Role.RIDER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class Location:
    """Last reported rider GPS fix."""
    lat: float
    lng: float
    captured_at: float
    accuracy: Optional[float] = None
    speed: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lat': self.lat,
            'lng': self.lng,
            'accuracy': self.accuracy,
            'speed': self.speed,
            'timestamp': to_millis(self.captured_at),
        }


@dataclass
class RiderSession:
    """Presence record for one rider."""
    rider_id: str
    status: str
    last_seen: float
    location: Optional[Location] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': str(self.status),
            'location': self.location.to_dict() if self.location else None,
            'lastSeen': to_millis(self.last_seen),
        }


@dataclass
class Delivery:
    """A unit of dispatch work tied to a customer order."""
    delivery_id: str
    customer_name: str
    address: str
    created_at: float
    customer_phone: str = ''
    items: List[Dict[str, Any]] = field(default_factory=list)
    total: float = 0
    distance_km: float = 0
    status: str = DeliveryStatus.PENDING
    rider_id: Optional[str] = None
    accepted_at: Optional[float] = None
    completed_at: Optional[float] = None
    cancelled_at: Optional[float] = None
    cancel_reason: str = ''
    payout: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_offer(self) -> Dict[str, Any]:
        """Shape pushed to riders in `new_delivery` frames."""
        return {
            'id': self.delivery_id,
            'customerName': self.customer_name,
            'address': self.address,
            'items': self.items,
            'total': self.total,
            'distance': self.distance_km,
            'customerPhone': self.customer_phone,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_offer()
        data.update({
            'status': str(self.status),
            'riderId': self.rider_id,
            'createdAt': to_millis(self.created_at),
            'acceptedAt': to_millis(self.accepted_at),
            'completedAt': to_millis(self.completed_at),
            'cancelledAt': to_millis(self.cancelled_at),
            'payout': self.payout,
        })
        return data
