"""Live session registry and channel fan-out over WebSockets.

Sessions are keyed by connection id and exist only while the socket is open.
Rooms: ``agents`` for dashboards, ``customer:<phone>`` for live customers.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from starlette.websockets import WebSocket

from supportdesk.logging_config import get_logger, mask_phone
from supportdesk.services.events import AGENTS_CHANNEL, customer_channel

logger = get_logger("fanout")

ROLE_ANONYMOUS = "anonymous"
ROLE_CUSTOMER = "customer"
ROLE_AGENT = "agent"


class Publisher(Protocol):
    async def publish(self, channel: str, event: str, payload: dict) -> int: ...


@dataclass
class LiveSession:
    connection_id: str
    websocket: Any
    role: str = ROLE_ANONYMOUS
    phone_number: Optional[str] = None
    agent_id: Optional[int] = None
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "role": self.role,
            "phone_number": self.phone_number,
            "agent_id": self.agent_id,
            "rooms": sorted(self.rooms),
            "connected_at": self.connected_at.isoformat(),
        }


class SessionRegistry:
    def __init__(self):
        self._sessions: dict[str, LiveSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def register(self, websocket: WebSocket) -> LiveSession:
        session = LiveSession(connection_id=uuid.uuid4().hex, websocket=websocket)
        self._sessions[session.connection_id] = session
        logger.info("Live session opened", extra={"context": {"connection_id": session.connection_id}})
        return session

    def unregister(self, connection_id: str) -> Optional[LiveSession]:
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            logger.info(
                "Live session closed",
                extra={"context": {"connection_id": connection_id, "role": session.role}},
            )
        return session

    def get(self, connection_id: str) -> Optional[LiveSession]:
        return self._sessions.get(connection_id)

    def identify_customer(self, connection_id: str, phone_number: str) -> LiveSession:
        session = self._sessions[connection_id]
        session.role = ROLE_CUSTOMER
        session.phone_number = phone_number
        session.rooms.add(customer_channel(phone_number))
        logger.info(
            "Customer joined live channel",
            extra={"context": {"connection_id": connection_id, "phone": mask_phone(phone_number)}},
        )
        return session

    def identify_agent(self, connection_id: str, agent_id: Optional[int]) -> LiveSession:
        session = self._sessions[connection_id]
        session.role = ROLE_AGENT
        session.agent_id = agent_id
        session.rooms.add(AGENTS_CHANNEL)
        return session

    def leave(self, connection_id: str, room: str) -> None:
        session = self._sessions.get(connection_id)
        if session is not None:
            session.rooms.discard(room)

    def sessions_in(self, room: str) -> list[LiveSession]:
        return [session for session in self._sessions.values() if room in session.rooms]

    def describe(self) -> list[dict]:
        return [session.describe() for session in self._sessions.values()]

    async def send(self, session: LiveSession, event: str, payload: dict) -> bool:
        try:
            await session.websocket.send_json({"event": event, "data": payload})
            return True
        except Exception as e:
            logger.warning(
                f"Live send failed: {e}",
                extra={"context": {"connection_id": session.connection_id, "event": event}},
            )
            self.unregister(session.connection_id)
            return False

    async def publish(self, channel: str, event: str, payload: dict) -> int:
        """Send to every session in the room; returns how many received it."""
        delivered = 0
        for session in self.sessions_in(channel):
            if await self.send(session, event, payload):
                delivered += 1
        return delivered


hub = SessionRegistry()


def get_hub() -> SessionRegistry:
    return hub
