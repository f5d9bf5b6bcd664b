import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class TurnState(str, Enum):
    IDLE = "idle"              # Waiting for the customer
    LISTENING = "listening"    # Capture source is producing transcripts
    RESOLVING = "resolving"    # Waiting on the intent resolver
    SPEAKING = "speaking"      # Synthesized reply is playing


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """One chat bubble. Never mutated after it is appended."""

    text: str
    sender: str  # "user" or "agent"
    id: str = ""
    timestamp: datetime = field(default_factory=_now)
    intent: Optional[str] = None
    confidence: Optional[float] = None

    def __post_init__(self):
        if not self.id:
            object.__setattr__(self, "id", f"{self.sender}-{uuid.uuid4().hex[:12]}")

    @property
    def is_user(self) -> bool:
        return self.sender == "user"


@dataclass
class Turn:
    """A single customer utterance and the agent reply it produced."""

    text: str
    timestamp: datetime = field(default_factory=_now)
    intent_name: Optional[str] = None
    confidence: Optional[float] = None
    fulfillment_text: Optional[str] = None
    failed: bool = False

    _settled: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._settled = loop.create_future()

    def settle(self) -> None:
        if self._settled is not None and not self._settled.done():
            self._settled.set_result(self)

    @property
    def is_settled(self) -> bool:
        return self._settled is not None and self._settled.done()

    async def wait(self) -> "Turn":
        """Wait until the agent message for this turn has been recorded."""
        if self._settled is None:
            return self
        return await asyncio.shield(self._settled)


@dataclass
class ConversationState:
    """Conversation state read by the presentation layer."""

    turn_state: TurnState = TurnState.IDLE
    messages: list[Message] = field(default_factory=list)

    # Interim transcript while listening (ephemeral)
    partial_transcript: str = ""

    # Transient banner text, not a chat message
    last_error: Optional[str] = None

    def set_state(self, state: TurnState) -> None:
        self.turn_state = state

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def clear(self) -> None:
        self.messages.clear()
        self.partial_transcript = ""
        self.last_error = None

    @property
    def is_idle(self) -> bool:
        return self.turn_state == TurnState.IDLE

    @property
    def user_message_count(self) -> int:
        return sum(1 for m in self.messages if m.is_user)
