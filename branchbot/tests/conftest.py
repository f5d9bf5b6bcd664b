"""Test doubles for the three capability interfaces."""
import asyncio
from typing import Optional

import pytest

from dialog.base import DetectIntentRequest, DetectIntentResponse, IntentResolver
from dialog.fallback import build_response
from speech.base import CaptureError, SpeechCapture, SpeechSynthesizer, SynthesisError, Transcript


class ScriptedResolver(IntentResolver):
    """Answers with the keyword matcher. Texts listed in `gates` wait for their event."""

    def __init__(self, gates: Optional[dict] = None, error: Optional[Exception] = None):
        self.gates = gates or {}
        self.error = error
        self.requests: list[DetectIntentRequest] = []

    async def detect_intent(self, request: DetectIntentRequest) -> DetectIntentResponse:
        self.requests.append(request)
        gate = self.gates.get(request.text)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return build_response(request.text)


class FakeSynthesizer(SpeechSynthesizer):
    def __init__(self, hold: bool = False, fail: bool = False, available: bool = True):
        self.hold = hold
        self.fail = fail
        self._available = available
        self.spoken: list[str] = []
        self.active = 0
        self.max_active = 0
        self.interrupted = 0
        self.cancel_calls = 0

    @property
    def available(self) -> bool:
        return self._available

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.fail:
                raise SynthesisError("audio device busy")
            if self.hold:
                await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.interrupted += 1
            raise
        finally:
            self.active -= 1

    async def cancel(self) -> None:
        self.cancel_calls += 1


class FakeCapture(SpeechCapture):
    def __init__(self, transcripts=(), error: Optional[str] = None, hold: bool = False):
        self.transcripts = list(transcripts)
        self.error = error
        self.hold = hold
        self.listen_calls = 0
        self._stopped = asyncio.Event()

    async def listen(self):
        self.listen_calls += 1
        for transcript in self.transcripts:
            yield transcript
        if self.hold:
            await self._stopped.wait()
        if self.error:
            raise CaptureError(self.error)

    async def stop(self) -> None:
        self._stopped.set()


async def eventually(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def resolver():
    return ScriptedResolver()


def final(text: str) -> Transcript:
    return Transcript(text=text, is_final=True)


def interim(text: str) -> Transcript:
    return Transcript(text=text, is_final=False)
