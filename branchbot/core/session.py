import time
import uuid
from typing import Optional

from loguru import logger


class SessionManager:
    """Owns the conversation identity sent to the intent resolver.

    One instance per conversation. The identifier is a continuity token for
    the remote agent, not a credential.
    """

    def __init__(self, agent_id: Optional[str] = None):
        self._session_id: Optional[str] = None
        self._agent_id = agent_id

    @staticmethod
    def _generate() -> str:
        return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    def current_session_id(self) -> str:
        """Return the active session id, creating one on first use."""
        if self._session_id is None:
            self._session_id = self._generate()
            logger.debug("New session: {}", self._session_id)
        return self._session_id

    def reset_session(self) -> None:
        """Drop the current id. Messages are cleared by the caller."""
        self._session_id = None

    @property
    def agent_id(self) -> Optional[str]:
        return self._agent_id

    def set_agent_id(self, agent_id: Optional[str]) -> None:
        """Switch the target agent. Starts a fresh session."""
        self._agent_id = agent_id
        self.reset_session()
        logger.info("Agent selected: {}", agent_id or "default")
