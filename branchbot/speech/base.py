from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass(frozen=True)
class Transcript:
    text: str
    is_final: bool = False


class CaptureError(Exception):
    """Speech capture failed (permission denied, no speech, aborted, network)."""


class SynthesisError(Exception):
    """Speech output could not be produced or played."""


class SpeechCapture(ABC):
    """Microphone speech-to-text source."""

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def listen(self) -> AsyncIterator[Transcript]:
        """Yield interim and final transcripts until the utterance ends.

        Raises:
            CaptureError: when recognition fails.
        """
        ...

    async def stop(self) -> None:
        """Stop listening. Any final transcript already heard is still delivered."""
        pass


class SpeechSynthesizer(ABC):
    """Text-to-speech output channel. Only one utterance plays at a time."""

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    async def speak(self, text: str) -> None:
        """Play text and return once playback has finished.

        Raises:
            SynthesisError: when synthesis or playback fails.
        """
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """Stop whatever is playing now."""
        ...
