"""
DISPATCH App - Delivery Assignment Ledger

In-memory record of deliveries in flight and their lifecycle:

    pending -> accepted -> picked_up -> out_for_delivery -> arrived -> completed
    pending | accepted -> cancelled

Every transition is a synchronous check-and-set. Nothing here awaits, so
two riders racing for the same delivery cannot interleave between the
pending check and the assignment: the first accept wins.

A rider who disconnects keeps their assignment; there is no automatic
cancellation or reassignment.
"""

import logging
import random
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from dispatch.models import (
    ACTIVE_STATUSES, Delivery, DeliveryStatus, PROGRESS_SEQUENCE,
)
from dispatch.results import Result

logger = logging.getLogger(__name__)


# ============================================
# LEDGER CONFIGURATION
# ============================================

ARCHIVE_SIZE = 200  # Finished deliveries kept for the admin snapshot
PAYOUT_MIN = 50
PAYOUT_MAX = 149

# Rejection reasons shown to riders
REASON_NOT_FOUND = 'delivery not found'
REASON_ALREADY_ACCEPTED = 'delivery already accepted'
REASON_RIDER_BUSY = 'rider already has an active delivery'
REASON_NOT_OWNER = 'delivery is not assigned to this rider'
REASON_NOT_IN_PROGRESS = 'delivery is not in progress'
REASON_NOT_CANCELLABLE = 'delivery can no longer be cancelled'
REASON_DUPLICATE = 'delivery already exists'


class DeliveryLedger:
    """Owns every Delivery; callers only ever get ids or read copies."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        archive_size: int = ARCHIVE_SIZE,
    ):
        self.clock = clock
        self.rng = rng or random.Random()
        self._deliveries: Dict[str, Delivery] = {}
        self._active_by_rider: Dict[str, str] = {}
        self._archive: Deque[Delivery] = deque(maxlen=archive_size)

    def __len__(self) -> int:
        return len(self._deliveries)

    # ============================================
    # Intake
    # ============================================

    def add(self, delivery: Delivery) -> Result:
        """Register new pending work. Ids are unique across live and archived."""
        if self.get(delivery.delivery_id) is not None:
            return Result.failure(REASON_DUPLICATE)

        delivery.status = DeliveryStatus.PENDING
        delivery.rider_id = None
        self._deliveries[delivery.delivery_id] = delivery
        logger.info(f"[LEDGER] Delivery {delivery.delivery_id} pending")
        return Result.success(delivery)

    def publish_available(self, rider_id: str, limit: Optional[int] = None) -> List[Delivery]:
        """
        Pending deliveries to offer a rider who just came online.

        Offers reserve nothing: the same delivery can be offered to several
        riders and goes to whoever accepts first. A rider who already holds
        a delivery is offered nothing.
        """
        if rider_id in self._active_by_rider:
            return []

        offers = self.pending()
        if limit is not None:
            offers = offers[:limit]
        return offers

    # ============================================
    # Transitions
    # ============================================

    def accept(self, delivery_id: str, rider_id: str) -> Result:
        """pending -> accepted, only for a still-pending delivery and a free rider."""
        delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            return Result.failure(REASON_NOT_FOUND)

        if delivery.status != DeliveryStatus.PENDING:
            logger.info(
                f"[LEDGER] Rider {rider_id} lost race for {delivery_id} "
                f"(status: {delivery.status}, rider: {delivery.rider_id})"
            )
            return Result.failure(REASON_ALREADY_ACCEPTED)

        if rider_id in self._active_by_rider:
            return Result.failure(REASON_RIDER_BUSY)

        delivery.status = DeliveryStatus.ACCEPTED
        delivery.rider_id = rider_id
        delivery.accepted_at = self.clock()
        self._active_by_rider[rider_id] = delivery_id

        logger.info(f"[LEDGER] Delivery {delivery_id} accepted by rider {rider_id}")
        return Result.success(delivery)

    def progress_tick(self, delivery_id: str) -> Result:
        """Advance an accepted delivery one step towards `arrived`."""
        delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            return Result.failure(REASON_NOT_FOUND)

        if delivery.status == DeliveryStatus.ACCEPTED:
            next_status = PROGRESS_SEQUENCE[0]
        elif delivery.status in PROGRESS_SEQUENCE[:-1]:
            next_status = PROGRESS_SEQUENCE[PROGRESS_SEQUENCE.index(delivery.status) + 1]
        else:
            return Result.failure(REASON_NOT_IN_PROGRESS)

        delivery.status = next_status
        logger.debug(f"[LEDGER] Delivery {delivery_id} -> {next_status}")
        return Result.success(delivery)

    def complete(self, delivery_id: str, rider_id: str) -> Result:
        """
        Mark a delivery completed by its assigned rider.

        The payout is a random stand-in until a real settlement calculation
        is wired in.
        """
        delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            return Result.failure(REASON_NOT_FOUND)

        if delivery.rider_id != rider_id:
            return Result.failure(REASON_NOT_OWNER)

        if delivery.status not in ACTIVE_STATUSES:
            return Result.failure(REASON_NOT_IN_PROGRESS)

        delivery.status = DeliveryStatus.COMPLETED
        delivery.completed_at = self.clock()
        delivery.payout = self.rng.randint(PAYOUT_MIN, PAYOUT_MAX)
        self._finish(delivery)

        logger.info(
            f"[LEDGER] Delivery {delivery_id} completed by rider {rider_id} "
            f"(payout: {delivery.payout})"
        )
        return Result.success(delivery)

    def cancel(self, delivery_id: str, reason: str = '') -> Result:
        """pending | accepted -> cancelled, on behalf of order management."""
        delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            return Result.failure(REASON_NOT_FOUND)

        if delivery.status not in (DeliveryStatus.PENDING, DeliveryStatus.ACCEPTED):
            return Result.failure(REASON_NOT_CANCELLABLE)

        delivery.status = DeliveryStatus.CANCELLED
        delivery.cancelled_at = self.clock()
        delivery.cancel_reason = reason
        self._finish(delivery)

        logger.info(f"[LEDGER] Delivery {delivery_id} cancelled: {reason or '-'}")
        return Result.success(delivery)

    # ============================================
    # Read API
    # ============================================

    def get(self, delivery_id: str) -> Optional[Delivery]:
        delivery = self._deliveries.get(delivery_id)
        if delivery is not None:
            return delivery
        for archived in self._archive:
            if archived.delivery_id == delivery_id:
                return archived
        return None

    def active_for(self, rider_id: str) -> Optional[Delivery]:
        delivery_id = self._active_by_rider.get(rider_id)
        if delivery_id is None:
            return None
        return self._deliveries.get(delivery_id)

    def pending(self) -> List[Delivery]:
        return sorted(
            (d for d in self._deliveries.values() if d.status == DeliveryStatus.PENDING),
            key=lambda d: d.created_at,
        )

    def snapshot(self) -> List[dict]:
        live = [d.to_dict() for d in list(self._deliveries.values())]
        return live + [d.to_dict() for d in list(self._archive)]

    def _finish(self, delivery: Delivery) -> None:
        if delivery.rider_id and self._active_by_rider.get(delivery.rider_id) == delivery.delivery_id:
            del self._active_by_rider[delivery.rider_id]
        self._deliveries.pop(delivery.delivery_id, None)
        self._archive.appendleft(delivery)
