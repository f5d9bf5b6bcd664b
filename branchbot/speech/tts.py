import base64
import binascii
from typing import Optional

import httpx
from loguru import logger

from dialog.http_client import error_message
from speech.audio_player import AudioPlayer
from speech.base import SpeechSynthesizer, SynthesisError


class HttpSpeechSynthesizer(SpeechSynthesizer):
    """Fetches MP3 audio from the proxy's /api/tts endpoint and plays it locally."""

    def __init__(
        self,
        base_url: str,
        player: Optional[AudioPlayer] = None,
        voice_name: Optional[str] = None,
        language_code: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.player = player or AudioPlayer()
        self.voice_name = voice_name
        self.language_code = language_code
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def synthesize(self, text: str) -> tuple[bytes, str]:
        """Return (audio bytes, content type) for text."""
        body = {"text": text}
        if self.voice_name:
            body["voiceName"] = self.voice_name
        if self.language_code:
            body["languageCode"] = self.language_code

        logger.debug("TTS: requesting audio for '{}'", text[:50])
        try:
            resp = await self._client.post("/api/tts", json=body)
        except httpx.HTTPError as e:
            raise SynthesisError(str(e) or type(e).__name__) from e
        if resp.is_error:
            raise SynthesisError(error_message(resp))

        try:
            data = resp.json()
            audio = base64.b64decode(data["audioContent"], validate=True)
            content_type = data.get("contentType") or "audio/mpeg"
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise SynthesisError("Malformed TTS response") from e
        return audio, content_type

    async def speak(self, text: str) -> None:
        if not text:
            return
        audio, content_type = await self.synthesize(text)
        try:
            await self.player.play(audio, content_type)
        except OSError as e:
            raise SynthesisError("Audio playback failed") from e

    async def cancel(self) -> None:
        await self.player.stop()

    async def close(self):
        await self._client.aclose()
        self.player.close()
