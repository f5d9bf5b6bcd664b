from typing import Optional

import httpx
from loguru import logger

from dialog.base import (
    AgentsResponse,
    DetectIntentRequest,
    DetectIntentResponse,
    FeatureNotAvailable,
    IntentResolver,
    ResolverError,
    WireModel,
)


def error_message(response: httpx.Response) -> str:
    """Server-provided `error` field if there is one, else a status-based message."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP error! status: {response.status_code}"


def parse_body(response: httpx.Response, model: type[WireModel]) -> WireModel:
    """Validate a 2xx body. Malformed JSON or fields raise ResolverError."""
    try:
        return model.model_validate(response.json())
    except ValueError as e:
        logger.error("Malformed response from {}: {}", response.url.path, e)
        raise ResolverError("Malformed response from intent service") from e


class HttpIntentResolver(IntentResolver):
    """Talks to the backend proxy's /api/dialogflow endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def detect_intent(self, request: DetectIntentRequest) -> DetectIntentResponse:
        try:
            resp = await self._client.post("/api/dialogflow/detect-intent", json=request.to_wire())
        except httpx.HTTPError as e:
            logger.error("Error calling intent service: {}", e)
            raise ResolverError(str(e) or type(e).__name__) from e

        if resp.is_error:
            raise ResolverError(error_message(resp))
        return parse_body(resp, DetectIntentResponse)

    async def detect_intent_audio(
        self, audio: bytes, session_id: str, language_code: str = "en-US"
    ) -> DetectIntentResponse:
        """Upload recorded audio. The proxy does not support this yet."""
        try:
            resp = await self._client.post(
                "/api/dialogflow/detect-intent-audio",
                files={"audio": ("audio.wav", audio, "audio/wav")},
                data={"sessionId": session_id, "languageCode": language_code},
            )
        except httpx.HTTPError as e:
            raise ResolverError(str(e) or type(e).__name__) from e

        if resp.status_code == 501:
            raise FeatureNotAvailable(error_message(resp))
        if resp.is_error:
            raise ResolverError(error_message(resp))
        return parse_body(resp, DetectIntentResponse)

    async def list_agents(self) -> AgentsResponse:
        try:
            resp = await self._client.get("/api/dialogflow/agents")
        except httpx.HTTPError as e:
            raise ResolverError(str(e) or type(e).__name__) from e
        if resp.is_error:
            raise ResolverError(f"HTTP error! status: {resp.status_code}")
        return parse_body(resp, AgentsResponse)

    async def close(self):
        await self._client.aclose()
