import uuid

from loguru import logger

from dialog.base import (
    DetectIntentRequest,
    DetectIntentResponse,
    IntentInfo,
    IntentResolver,
    OutputContext,
    ResolverError,
    ResolverUnavailable,
)


class DialogflowResolver(IntentResolver):
    """Google Dialogflow ES agent.

    Authentication comes from GOOGLE_APPLICATION_CREDENTIALS, which should
    point at a service account key file.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            try:
                from google.cloud import dialogflow
                self._client = dialogflow.SessionsAsyncClient()
            except Exception as e:
                logger.error("Failed to initialize Dialogflow client: {}", e)
                logger.info(
                    "Make sure GOOGLE_APPLICATION_CREDENTIALS is set to your service account key file path"
                )
                raise ResolverUnavailable("Dialogflow client not initialized") from e
        return self._client

    async def detect_intent(self, request: DetectIntentRequest) -> DetectIntentResponse:
        client = self._ensure_client()
        from google.cloud import dialogflow

        session = client.session_path(self.project_id, request.session_id or str(uuid.uuid4()))
        query_input = dialogflow.QueryInput(
            text=dialogflow.TextInput(text=request.text, language_code=request.language_code)
        )

        try:
            response = await client.detect_intent(
                request={"session": session, "query_input": query_input}
            )
        except Exception as e:
            logger.error("Dialogflow detect intent error: {}", e)
            raise ResolverError(str(e)) from e

        result = dialogflow.QueryResult.to_dict(response.query_result)
        return response_from_result(result)

    async def close(self):
        if self._client is not None:
            await self._client.transport.close()
            self._client = None


def response_from_result(result: dict) -> DetectIntentResponse:
    """Map a snake_case QueryResult dict onto the proxy's response shape."""
    intent = result.get("intent") or {}
    return DetectIntentResponse(
        query_text=result.get("query_text", ""),
        fulfillment_text=result.get("fulfillment_text", ""),
        intent=IntentInfo(
            display_name=intent.get("display_name") or "Unknown",
            confidence=result.get("intent_detection_confidence") or 0,
        ),
        parameters=result.get("parameters") or {},
        output_contexts=[
            OutputContext(
                name=ctx.get("name", ""),
                lifespan_count=ctx.get("lifespan_count", 0),
                parameters=ctx.get("parameters") or {},
            )
            for ctx in result.get("output_contexts") or []
        ],
    )
