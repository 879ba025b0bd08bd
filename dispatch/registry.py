"""
DISPATCH App - Connection Registry

Tracks every live real-time connection and the rider/admin identity bound
to it. Holds no business state: presence and assignments live in the
presence tracker and the ledger.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from dispatch.models import Connection, Role
from dispatch.results import Result

logger = logging.getLogger(__name__)

# Close code sent to a socket whose identity was taken over by a newer one
REPLACED_CLOSE_CODE = 4001


# ============================================
# BROADCAST PREDICATES
# ============================================

def admins(connection: Connection) -> bool:
    return connection.is_admin


def riders(connection: Connection) -> bool:
    return connection.is_rider


def everyone(connection: Connection) -> bool:
    return True


class ConnectionRegistry:
    """
    Map of connection id -> Connection, plus an identity index.

    The transport only needs `send(handle, message)` and
    `close(handle, code)` coroutines.
    """

    def __init__(self, transport, clock: Callable[[], float] = time.time):
        self.transport = transport
        self.clock = clock
        self._connections: Dict[str, Connection] = {}
        self._identities: Dict[Tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    # ============================================
    # Lifecycle
    # ============================================

    def register(self, handle: Any) -> str:
        """Create an unauthenticated entry for a freshly opened transport."""
        now = self.clock()
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = Connection(
            connection_id=connection_id,
            handle=handle,
            connected_at=now,
            last_activity=now,
        )
        logger.debug(f"[REGISTRY] Registered connection {connection_id[:8]}")
        return connection_id

    def bind_identity(self, connection_id: str, role: str, identity: str) -> Result:
        """
        Bind a rider/admin identity to a connection.

        Last connection wins: an older connection holding the same identity
        is evicted and its socket asked to close. Its presence record is
        left alone.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return Result.failure('unknown connection')

        if connection.identity is not None:
            self._identities.pop((connection.role, connection.identity), None)

        key = (role, identity)
        previous_id = self._identities.get(key)
        evicted = None
        if previous_id is not None and previous_id != connection_id:
            evicted = self._connections.pop(previous_id, None)
            if evicted is not None:
                logger.info(
                    f"[REGISTRY] {role} {identity} reconnected, evicting "
                    f"connection {previous_id[:8]}"
                )

        connection.role = role
        connection.identity = identity
        connection.last_activity = self.clock()
        self._identities[key] = connection_id
        return Result.success(evicted)

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove the entry for a closed transport. Unknown ids are a no-op."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        if connection.identity is not None:
            key = (connection.role, connection.identity)
            if self._identities.get(key) == connection_id:
                del self._identities[key]

        logger.debug(
            f"[REGISTRY] Unregistered connection {connection_id[:8]} "
            f"({connection.role} {connection.identity})"
        )
        return connection

    def evict_identity(self, role: str, identity: str) -> Optional[Connection]:
        """Drop whatever connection is bound to an identity (stale sweep)."""
        connection_id = self._identities.get((role, identity))
        if connection_id is None:
            return None
        return self.unregister(connection_id)

    def touch(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_activity = self.clock()

    # ============================================
    # Lookups
    # ============================================

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connection_for(self, role: str, identity: str) -> Optional[Connection]:
        connection_id = self._identities.get((role, identity))
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def connections(self, predicate: Callable[[Connection], bool] = everyone) -> List[Connection]:
        return [c for c in list(self._connections.values()) if predicate(c)]

    def count_by_role(self) -> Dict[str, int]:
        counts = {str(role): 0 for role in Role}
        for connection in list(self._connections.values()):
            counts[str(connection.role)] += 1
        return counts

    # ============================================
    # Delivery
    # ============================================

    async def send(self, identity: str, message: dict, role: str = Role.RIDER) -> bool:
        """Best-effort unicast. No live connection means nothing is sent."""
        connection = self.connection_for(role, identity)
        if connection is None:
            logger.debug(
                f"[REGISTRY] No live connection for {role} {identity}, "
                f"dropping {message.get('type')}"
            )
            return False
        return await self._deliver(connection, message)

    async def send_to_connection(self, connection_id: str, message: dict) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return await self._deliver(connection, message)

    async def broadcast(self, predicate: Callable[[Connection], bool], message: dict) -> int:
        """
        Fan a message out to every live connection matching `predicate`.

        Sends run concurrently; one failing recipient does not stop the rest.
        Returns the number of successful sends.
        """
        recipients = self.connections(predicate)
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(self._deliver(connection, message) for connection in recipients)
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            f"[REGISTRY] Broadcast {message.get('type')} to "
            f"{delivered}/{len(recipients)} connections"
        )
        return delivered

    async def close(self, connection: Connection, code: int = REPLACED_CLOSE_CODE) -> None:
        try:
            await self.transport.close(connection.handle, code)
        except Exception as e:
            logger.warning(
                f"[REGISTRY] Failed to close connection {connection.connection_id[:8]}: {e}"
            )

    async def _deliver(self, connection: Connection, message: dict) -> bool:
        try:
            await self.transport.send(connection.handle, message)
            return True
        except Exception as e:
            logger.error(
                f"[REGISTRY] Failed to send {message.get('type')} to "
                f"{connection.role} {connection.identity or connection.connection_id[:8]}: {e}"
            )
            return False
