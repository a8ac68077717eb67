import logging
import threading
from typing import Dict, Optional

from pos_terminal.core.config import settings
from pos_terminal.core.errors import NotFound, errmsg
from pos_terminal.services.pos_session import PosSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Open terminal sessions, in memory. A restart starts every terminal empty."""

    def __init__(self):
        self._sessions: Dict[str, PosSession] = {}
        self._guard = threading.Lock()

    def open(
        self,
        backend,
        shop_id: Optional[str] = None,
        user_id: Optional[str] = None,
        terminal_id: Optional[str] = None,
    ) -> PosSession:
        s = PosSession(
            backend,
            shop_id or settings.shop_id,
            user_id=user_id,
            terminal_id=terminal_id,
            scan_window=settings.scan_dedup_seconds,
            stale_after=settings.stock_stale_seconds,
        )
        with self._guard:
            self._sessions[s.id] = s
        logger.info("session %s opened for shop %s", s.id, s.shop_id)
        return s

    def get(self, sid: str) -> PosSession:
        with self._guard:
            s = self._sessions.get(sid)
        if s is None:
            raise NotFound(errmsg.SESSION_NOT_FOUND)
        return s

    def close(self, sid: str) -> PosSession:
        s = self.get(sid)
        s.close()
        with self._guard:
            self._sessions.pop(sid, None)
        logger.info("session %s closed", sid)
        return s

    def clear(self) -> None:
        with self._guard:
            self._sessions.clear()


registry = SessionRegistry()
