"""
DISPATCH App - Presence & Location Tracker

Per-rider online/offline/busy status and last known GPS fix, with eviction
of riders that stopped reporting.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from dispatch.models import Location, RiderSession, RiderStatus
from dispatch.results import Result
from dispatch.serializers import LocationSerializer

logger = logging.getLogger(__name__)


# ============================================
# PRESENCE CONFIGURATION
# ============================================

STALE_TIMEOUT_SECONDS = 300  # 5 minutes without any rider activity


def mint_rider_id() -> str:
    return f"rider_{uuid.uuid4().hex[:12]}"


class PresenceTracker:
    """In-memory rider sessions keyed by rider id."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        stale_timeout: float = STALE_TIMEOUT_SECONDS,
    ):
        self.clock = clock
        self.stale_timeout = stale_timeout
        self._sessions: Dict[str, RiderSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, rider_id: str) -> bool:
        return rider_id in self._sessions

    def get(self, rider_id: str) -> Optional[RiderSession]:
        return self._sessions.get(rider_id)

    # ============================================
    # Rider lifecycle
    # ============================================

    def authenticate(self, rider_id: Optional[str] = None) -> str:
        """
        Create or reset the session for a rider.

        Re-authenticating an existing rider puts them back to offline.
        A rider id is minted when the client did not supply one.
        """
        rider_id = rider_id or mint_rider_id()
        now = self.clock()

        session = self._sessions.get(rider_id)
        if session is None:
            self._sessions[rider_id] = RiderSession(
                rider_id=rider_id,
                status=RiderStatus.OFFLINE,
                last_seen=now,
            )
            logger.info(f"[PRESENCE] Rider {rider_id} authenticated")
        else:
            session.status = RiderStatus.OFFLINE
            session.last_seen = max(session.last_seen, now)
            logger.info(f"[PRESENCE] Rider {rider_id} re-authenticated")

        return rider_id

    def set_status(self, rider_id: str, status: str) -> Result:
        """Move a rider between offline, online and busy."""
        if status not in RiderStatus.values:
            return Result.failure(f"invalid status '{status}'")

        session = self._sessions.get(rider_id)
        if session is None:
            return Result.failure('rider not authenticated')

        previous = session.status
        session.status = RiderStatus(status)
        self._touch(session)

        logger.info(f"[PRESENCE] Rider {rider_id}: {previous} -> {session.status}")
        return Result.success(session)

    def update_location(self, rider_id: str, payload: Any) -> Result:
        """
        Overwrite the cached location.

        Last write wins: an update carrying an older capture timestamp than
        the cached one still replaces it.
        """
        session = self._sessions.get(rider_id)
        if session is None:
            return Result.failure('rider not authenticated')

        serializer = LocationSerializer(data=payload)
        if not serializer.is_valid():
            logger.warning(
                f"[PRESENCE] Rejected location from {rider_id}: {serializer.errors}"
            )
            return Result.failure('invalid location', serializer.errors)

        data = serializer.validated_data
        now = self.clock()
        timestamp = data.get('timestamp')

        session.location = Location(
            lat=data['lat'],
            lng=data['lng'],
            accuracy=data.get('accuracy'),
            speed=data.get('speed'),
            captured_at=timestamp / 1000 if timestamp is not None else now,
        )
        self._touch(session)

        logger.debug(
            f"[PRESENCE] Rider {rider_id} at ({data['lat']:.5f}, {data['lng']:.5f})"
        )
        return Result.success(session.location)

    def heartbeat(self, rider_id: str) -> Result:
        session = self._sessions.get(rider_id)
        if session is None:
            return Result.failure('rider not authenticated')
        self._touch(session)
        return Result.success(session)

    def disconnect(self, rider_id: str) -> bool:
        """Forget a rider whose connection closed."""
        session = self._sessions.pop(rider_id, None)
        if session is not None:
            logger.info(f"[PRESENCE] Rider {rider_id} disconnected")
        return session is not None

    def sweep_stale(self, now: Optional[float] = None, timeout: Optional[float] = None) -> List[str]:
        """Evict every session idle for longer than `timeout` seconds."""
        now = self.clock() if now is None else now
        timeout = self.stale_timeout if timeout is None else timeout

        evicted = [
            rider_id
            for rider_id, session in list(self._sessions.items())
            if now - session.last_seen > timeout
        ]
        for rider_id in evicted:
            del self._sessions[rider_id]
            logger.info(f"[PRESENCE] Removed inactive rider: {rider_id}")

        return evicted

    # ============================================
    # Read API
    # ============================================

    def riders_with_status(self, status: str) -> List[str]:
        return [
            rider_id
            for rider_id, session in list(self._sessions.items())
            if session.status == status
        ]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            rider_id: session.to_dict()
            for rider_id, session in list(self._sessions.items())
        }

    def _touch(self, session: RiderSession) -> None:
        # last_seen never moves backwards
        session.last_seen = max(session.last_seen, self.clock())
