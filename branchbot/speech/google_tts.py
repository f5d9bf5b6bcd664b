from typing import Optional

from loguru import logger

from core.config import TTSConfig
from speech.base import SynthesisError


class GoogleTextToSpeech:
    """Server-side synthesis with Google Cloud Text-to-Speech (Neural2 voices, MP3 out)."""

    CONTENT_TYPE = "audio/mpeg"

    def __init__(self, config: TTSConfig):
        self.config = config
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from google.cloud import texttospeech
            self._client = texttospeech.TextToSpeechAsyncClient()
        return self._client

    async def synthesize(
        self,
        text: str,
        voice_name: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> bytes:
        """Return MP3 bytes for text."""
        try:
            from google.cloud import texttospeech

            client = self._ensure_client()
            voice = texttospeech.VoiceSelectionParams(
                language_code=language_code or self.config.language_code,
                name=voice_name or self.config.voice_name,
                ssml_gender=texttospeech.SsmlVoiceGender.FEMALE,
            )
            audio_config = texttospeech.AudioConfig(
                audio_encoding=texttospeech.AudioEncoding.MP3,
                speaking_rate=self.config.speaking_rate,
                pitch=self.config.pitch,
                volume_gain_db=0,
            )
            logger.debug("TTS request: '{}...' voice={}", text[:50], voice.name)
            response = await client.synthesize_speech(
                input=texttospeech.SynthesisInput(text=text),
                voice=voice,
                audio_config=audio_config,
            )
        except Exception as e:
            logger.error("TTS error: {}", e)
            raise SynthesisError(str(e)) from e
        return response.audio_content

    async def list_voices(self, language_code: str = "en") -> list[dict]:
        """Neural2 and Studio voices only (highest quality)."""
        try:
            client = self._ensure_client()
            result = await client.list_voices(language_code=language_code)
        except Exception as e:
            logger.error("List voices error: {}", e)
            raise SynthesisError(str(e)) from e

        return [
            {
                "name": v.name,
                "languageCodes": list(v.language_codes),
                "ssmlGender": v.ssml_gender.name,
                "naturalSampleRateHertz": v.natural_sample_rate_hertz,
            }
            for v in result.voices
            if "Neural2" in v.name or "Studio" in v.name
        ]
