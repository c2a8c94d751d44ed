"""
WebSocket connection manager for realtime chat and staff notifications.

Connections are grouped into rooms. Every connection joins the room of its
own account; connections whose actor holds the admin or superadmin
capability also join the shared ``admin`` / ``superadmin`` rooms.
Conversation events fan out to the participants' rooms (and the admin room
for the events staff must act on). Delivery is at-most-once; clients catch
up through conversation history.
"""

from typing import Dict, Iterable, Set
from uuid import UUID
import asyncio
import json
import logging

from fastapi import WebSocket

from app.db.enums import ADMIN_ROOM_EVENTS, Capability

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"
SUPERADMIN_ROOM = "superadmin"


def identity_room(account_id: UUID) -> str:
    return f"account:{account_id}"


def rooms_for(account_id: UUID, capabilities: Iterable[Capability] = ()) -> set[str]:
    """Rooms a connection joins on connect."""
    rooms = {identity_room(account_id)}
    caps = set(capabilities)
    if Capability.ADMIN in caps:
        rooms.add(ADMIN_ROOM)
    if Capability.SUPERADMIN in caps:
        rooms.add(SUPERADMIN_ROOM)
    return rooms


class ConnectionManager:
    """Manages WebSocket connections grouped by room."""

    def __init__(self):
        # room -> set of active WebSocket connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        # websocket -> rooms it joined (for cleanup)
        self._memberships: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()
        # conversation_id -> lock serializing publishes for that conversation
        self._conversation_locks: Dict[UUID, asyncio.Lock] = {}

    async def connect(
        self,
        websocket: WebSocket,
        account_id: UUID,
        capabilities: Iterable[Capability] = (),
    ) -> set[str]:
        """Accept and register a new WebSocket connection. Returns joined rooms."""
        await websocket.accept()
        rooms = rooms_for(account_id, capabilities)
        async with self._lock:
            for room in rooms:
                self._rooms.setdefault(room, set()).add(websocket)
            self._memberships[websocket] = set(rooms)
        return rooms

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection from every room it joined."""
        async with self._lock:
            self._forget(websocket)

    def _forget(self, websocket: WebSocket) -> None:
        for room in self._memberships.pop(websocket, set()):
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    def conversation_lock(self, conversation_id: UUID) -> asyncio.Lock:
        lock = self._conversation_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._conversation_locks[conversation_id] = lock
        return lock

    def release_conversation(self, conversation_id: UUID) -> None:
        """Drop the ordering lock of a closed conversation."""
        self._conversation_locks.pop(conversation_id, None)

    async def _deliver(self, rooms: Iterable[str], message: dict) -> int:
        async with self._lock:
            targets: Set[WebSocket] = set()
            for room in rooms:
                targets |= self._rooms.get(room, set())

        if not targets:
            return 0

        data = json.dumps(message, default=str)
        closed = []
        delivered = 0

        for ws in targets:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        # Clean up closed connections
        if closed:
            async with self._lock:
                for ws in closed:
                    self._forget(ws)
        return delivered

    async def send_to_user(self, account_id: UUID, message: dict) -> int:
        """Send a message to all connections for a specific account."""
        return await self._deliver([identity_room(account_id)], message)

    async def send_to_admins(self, message: dict) -> int:
        return await self._deliver([ADMIN_ROOM], message)

    async def publish(
        self,
        conversation_id: UUID,
        participant_ids: Iterable[UUID],
        message: dict,
    ) -> int:
        """
        Fan a conversation event out to its participants.

        approvalNeeded / formSubmitted also go to the admin room. Publishes
        for one conversation are serialized so clients see them in order.
        """
        rooms = {identity_room(pid) for pid in participant_ids}
        if message.get("type") in {e.value for e in ADMIN_ROOM_EVENTS}:
            rooms.add(ADMIN_ROOM)
        async with self.conversation_lock(conversation_id):
            return await self._deliver(rooms, message)

    def get_connected_count(self, account_id: UUID) -> int:
        """Get the number of active connections for an account."""
        return len(self._rooms.get(identity_room(account_id), set()))

    def get_room_size(self, room: str) -> int:
        return len(self._rooms.get(room, set()))

    def get_total_connections(self) -> int:
        """Get total number of active connections."""
        return len(self._memberships)


# Singleton instance
manager = ConnectionManager()
