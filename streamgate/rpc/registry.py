"""Process-wide registry of live sessions.

The registry is the single source of truth for "is this session alive".
It maps a session id to the transport that owns the session's stream.

All access happens on the server's event loop and no operation awaits, so
the map needs no locking. Each operation is O(1) apart from the snapshot
and drain helpers.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from streamgate.core.errors import SessionExistsError

if TYPE_CHECKING:
    from streamgate.rpc.transport import SseTransport

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One live client subscription.

    Attributes:
        id: Opaque session id, unique among live sessions.
        transport: The transport exclusively owned by this session.
        created_at: When the session was registered (informational).
    """

    id: str
    transport: SseTransport
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """Maps session ids to live transports."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def new_session_id(self) -> str:
        """Generate an id that is not currently live."""
        while True:
            session_id = str(uuid.uuid4())
            if session_id not in self._sessions:
                return session_id

    def register(self, session_id: str, transport: SseTransport) -> Session:
        """Store a transport under a session id.

        Raises:
            SessionExistsError: If the id is already live.
        """
        if session_id in self._sessions:
            raise SessionExistsError(session_id)
        session = Session(id=session_id, transport=transport, created_at=transport.created_at)
        self._sessions[session_id] = session
        logger.info("Session registered: %s (live: %d)", session_id, len(self._sessions))
        return session

    def lookup(self, session_id: str) -> SseTransport | None:
        """Return the transport for a live session, or None."""
        session = self._sessions.get(session_id)
        return session.transport if session is not None else None

    def deregister(self, session_id: str) -> None:
        """Remove a session. Removing an absent id is a no-op."""
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Session deregistered: %s (live: %d)", session_id, len(self._sessions))

    def sessions(self) -> list[Session]:
        """Snapshot of live sessions."""
        return list(self._sessions.values())

    def drain_all(self) -> list[SseTransport]:
        """Remove every session and return their transports.

        The caller is responsible for closing each transport.
        """
        transports = [s.transport for s in self._sessions.values()]
        self._sessions.clear()
        if transports:
            logger.info("Drained %d session(s) from registry", len(transports))
        return transports
