from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from dialog.base import (
    AgentsResponse,
    DetectIntentRequest,
    DetectIntentResponse,
    ResolverUnavailable,
)

router = APIRouter()


@router.post("/detect-intent", response_model=DetectIntentResponse)
async def detect_intent(body: DetectIntentRequest, request: Request):
    """Detect intent from text. Uses the local matcher when no agent is configured."""
    if not body.text:
        raise HTTPException(status_code=400, detail="Text is required")

    resolver_router = request.app.state.resolver_router
    try:
        resolver = resolver_router.get_resolver(body.agent_id)
        return await resolver.detect_intent(body)
    except ResolverUnavailable as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/detect-intent-audio")
async def detect_intent_audio():
    """Reserved for audio uploads. Not implemented."""
    return JSONResponse(
        status_code=501,
        content={
            "error": "Audio input not implemented. Please use text input with Web Speech API."
        },
    )


@router.get("/agents", response_model=AgentsResponse)
async def list_agents(request: Request):
    """Static table of selectable agents."""
    return request.app.state.resolver_router.list_agents()
