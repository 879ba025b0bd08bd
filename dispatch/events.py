"""
DISPATCH App - Outbound event frames

Builders for every frame the dispatch node pushes to riders and admins.
Each frame is a JSON object with a `type` discriminator; timestamps are
epoch milliseconds.
"""

from typing import Any, Dict, Optional

from dispatch.models import Delivery, to_millis

EMERGENCY_PRIORITY = 'high'


# ============================================
# CONNECTION EVENTS
# ============================================

def connected() -> Dict[str, Any]:
    return {
        'type': 'connected',
        'message': 'Connected to AAGAM real-time server',
    }


def auth_success(rider_id: str, status: str) -> Dict[str, Any]:
    return {
        'type': 'auth_success',
        'riderId': rider_id,
        'status': str(status),
    }


def admin_auth_success(admin_id: str) -> Dict[str, Any]:
    return {
        'type': 'admin_auth_success',
        'adminId': admin_id,
        'message': 'Admin authenticated successfully',
    }


def error(message: str, request_type: Optional[str] = None) -> Dict[str, Any]:
    frame = {'type': 'error', 'message': message}
    if request_type:
        frame['request'] = request_type
    return frame


def pong() -> Dict[str, Any]:
    return {'type': 'pong'}


# ============================================
# PRESENCE EVENTS
# ============================================

def status_update(status: str, timestamp: float) -> Dict[str, Any]:
    """Echo of a rider's own status change."""
    return {
        'type': 'status_update',
        'status': str(status),
        'timestamp': to_millis(timestamp),
    }


def rider_status_change(rider_id: str, status: str, timestamp: float) -> Dict[str, Any]:
    return {
        'type': 'rider_status_change',
        'riderId': rider_id,
        'status': str(status),
        'timestamp': to_millis(timestamp),
    }


def rider_location_update(rider_id: str, location: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'type': 'rider_location_update',
        'riderId': rider_id,
        'location': location,
    }


def location_request(admin_id: str) -> Dict[str, Any]:
    return {
        'type': 'location_request',
        'requestedBy': admin_id,
    }


def earnings_update(earnings: Dict[str, int]) -> Dict[str, Any]:
    return {
        'type': 'earnings_update',
        'earnings': earnings,
    }


# ============================================
# DELIVERY EVENTS
# ============================================

def new_delivery(delivery: Delivery) -> Dict[str, Any]:
    return {
        'type': 'new_delivery',
        'delivery': delivery.to_offer(),
    }


def delivery_accepted(delivery: Delivery) -> Dict[str, Any]:
    """Acceptance frame, sent to the rider and to admins."""
    return {
        'type': 'delivery_accepted',
        'deliveryId': delivery.delivery_id,
        'riderId': delivery.rider_id,
        'acceptedAt': to_millis(delivery.accepted_at),
    }


def delivery_rejected(delivery_id: Optional[str], reason: str) -> Dict[str, Any]:
    return {
        'type': 'delivery_rejected',
        'deliveryId': delivery_id,
        'reason': reason,
    }


def delivery_update(delivery: Delivery, timestamp: float) -> Dict[str, Any]:
    """Progress step pushed to the assigned rider."""
    return {
        'type': 'delivery_update',
        'deliveryId': delivery.delivery_id,
        'status': str(delivery.status),
        'timestamp': to_millis(timestamp),
    }


def delivery_completed(delivery: Delivery) -> Dict[str, Any]:
    """Completion ack for the rider, carrying the payout."""
    return {
        'type': 'delivery_completed',
        'deliveryId': delivery.delivery_id,
        'earnings': delivery.payout,
    }


def delivery_completed_admin(delivery: Delivery) -> Dict[str, Any]:
    return {
        'type': 'delivery_completed',
        'deliveryId': delivery.delivery_id,
        'riderId': delivery.rider_id,
        'payout': delivery.payout,
        'completedAt': to_millis(delivery.completed_at),
    }


def delivery_cancelled(delivery: Delivery) -> Dict[str, Any]:
    return {
        'type': 'delivery_cancelled',
        'deliveryId': delivery.delivery_id,
        'riderId': delivery.rider_id,
        'reason': delivery.cancel_reason,
    }


def routes_optimized() -> Dict[str, Any]:
    return {
        'type': 'routes_optimized',
        'message': 'Routes optimized successfully',
    }


# ============================================
# INCIDENT EVENTS
# ============================================

def issue_reported(rider_id: Optional[str], issue: Any, location: Any) -> Dict[str, Any]:
    return {
        'type': 'issue_reported',
        'riderId': rider_id,
        'issue': issue,
        'location': location,
    }


def emergency_alert(rider_id: Optional[str], location: Any = None) -> Dict[str, Any]:
    return {
        'type': 'emergency_alert',
        'priority': EMERGENCY_PRIORITY,
        'riderId': rider_id,
        'location': location,
        'message': f"Emergency stop activated by rider {rider_id}",
    }


def emergency_acknowledged(rider_id: Optional[str]) -> Dict[str, Any]:
    return {
        'type': 'emergency_acknowledged',
        'riderId': rider_id,
    }


# ============================================
# STOREFRONT EVENTS (relayed to every client)
# ============================================

def product_stock_changed(product_id: Any, new_stock: Any, adjustment: Any = 0) -> Dict[str, Any]:
    return {
        'type': 'product_stock_changed',
        'productId': product_id,
        'newStock': new_stock,
        'adjustment': adjustment or 0,
    }


def inventory_updated(inventory: Any) -> Dict[str, Any]:
    return {
        'type': 'inventory_updated',
        'inventory': inventory,
    }
