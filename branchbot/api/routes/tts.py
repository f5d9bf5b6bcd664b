import base64
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from dialog.base import WireModel
from speech.base import SynthesisError

router = APIRouter()


class TTSRequest(WireModel):
    text: Optional[str] = None
    voice_name: Optional[str] = None
    language_code: Optional[str] = None


@router.post("")
async def synthesize(body: TTSRequest, request: Request):
    """Convert text to speech. Audio is returned base64-encoded."""
    if not body.text:
        raise HTTPException(status_code=400, detail="Text is required")

    engine = request.app.state.tts_engine
    try:
        audio = await engine.synthesize(
            body.text, voice_name=body.voice_name, language_code=body.language_code
        )
    except SynthesisError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to synthesize speech", "details": str(e)},
        )

    return {
        "audioContent": base64.b64encode(audio).decode("ascii"),
        "contentType": engine.CONTENT_TYPE,
    }


@router.get("/voices")
async def list_voices(request: Request):
    engine = request.app.state.tts_engine
    try:
        voices = await engine.list_voices(language_code="en")
    except SynthesisError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to list voices", "details": str(e)},
        )
    return {"voices": voices}
