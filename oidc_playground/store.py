import logging
import time
import uuid

from oidc_playground.session import Playground
from oidc_playground.settings import settings

logger = logging.getLogger("uvicorn")


class SessionStore:
    """
    In-memory playground sessions keyed by an opaque id.

    A session left untouched for longer than `idle_timeout` seconds is evicted
    the next time the store is used. Nothing survives a restart.
    """

    def __init__(self, idle_timeout: float | None = None, clock=time.monotonic):
        self.idle_timeout = idle_timeout or settings().session_idle_timeout
        self.clock = clock
        self._sessions: dict[str, tuple[Playground, float]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self, playground: Playground) -> str:
        self.evict_idle()
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = (playground, self.clock())
        return session_id

    def get(self, session_id: str) -> Playground | None:
        """Return the session and mark it as used, or `None` if unknown or evicted."""
        self.evict_idle()

        try:
            playground, _ = self._sessions[session_id]
        except KeyError:
            return None

        self._sessions[session_id] = (playground, self.clock())
        return playground

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def evict_idle(self) -> list[str]:
        now = self.clock()
        expired = [
            session_id
            for session_id, (_, last_used) in self._sessions.items()
            if now - last_used > self.idle_timeout
        ]

        for session_id in expired:
            del self._sessions[session_id]

        if expired:
            logger.info("Evicted %d idle playground session(s)", len(expired))

        return expired

    def clear(self):
        self._sessions.clear()
