"""Tests for the backend proxy endpoints."""
import base64

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from core.config import ConfigManager
from dialog.base import IntentResolver, ResolverRouter, ResolverUnavailable
from dialog.providers.dialogflow_provider import DialogflowResolver
from speech.base import SynthesisError


class FakeTTS:
    CONTENT_TYPE = "audio/mpeg"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def synthesize(self, text, voice_name=None, language_code=None):
        self.calls.append((text, voice_name, language_code))
        if self.fail:
            raise SynthesisError("quota exceeded")
        return b"ID3-fake-mp3"

    async def list_voices(self, language_code="en"):
        if self.fail:
            raise SynthesisError("quota exceeded")
        return [{"name": "en-US-Neural2-F", "languageCodes": ["en-US"],
                 "ssmlGender": "FEMALE", "naturalSampleRateHertz": 24000}]


class ExplodingResolver(IntentResolver):
    async def detect_intent(self, request):
        raise RuntimeError("upstream exploded")


class ExplodingRouter(ResolverRouter):
    def get_resolver(self, agent_id=None):
        return ExplodingResolver()


def make_client(tmp_path, environ=None, tts=None, router_cls=None, **client_kwargs):
    cm = ConfigManager(tmp_path, environ=environ or {})
    router = router_cls(cm) if router_cls else None
    app = create_app(cm, resolver_router=router, tts_engine=tts or FakeTTS())
    return TestClient(app, **client_kwargs)


class TestHealth:
    def test_health(self, tmp_path):
        resp = make_client(tmp_path).get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["service"] == "Voice Agent Backend"
        assert "timestamp" in body

    def test_unknown_route(self, tmp_path):
        resp = make_client(tmp_path).get("/api/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found"}


class TestDetectIntent:
    def test_mock_response_without_project(self, tmp_path):
        resp = make_client(tmp_path).post(
            "/api/dialogflow/detect-intent",
            json={"sessionId": "session-1", "text": "What's my balance?", "languageCode": "en-US"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["queryText"] == "What's my balance?"
        assert body["intent"] == {"displayName": "account.balance", "confidence": 0.95}
        assert body["parameters"] == {}
        assert body["outputContexts"] == []

    def test_default_fallback(self, tmp_path):
        resp = make_client(tmp_path).post(
            "/api/dialogflow/detect-intent", json={"text": "xyz123 gibberish"}
        )
        assert resp.json()["intent"] == {"displayName": "fallback", "confidence": 0.5}

    @pytest.mark.parametrize("body", [{}, {"text": ""}, {"sessionId": "s"}])
    def test_text_required(self, tmp_path, body):
        resp = make_client(tmp_path).post("/api/dialogflow/detect-intent", json=body)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Text is required"}

    def test_client_not_initialized(self, tmp_path, monkeypatch):
        def broken(self):
            raise ResolverUnavailable("Dialogflow client not initialized")

        monkeypatch.setattr(DialogflowResolver, "_ensure_client", broken)
        client = make_client(tmp_path, environ={"DIALOGFLOW_PROJECT_ID": "bank-agent"})
        resp = client.post("/api/dialogflow/detect-intent", json={"text": "hello"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Dialogflow client not initialized"}

    def test_unhandled_error_in_production(self, tmp_path):
        client = make_client(tmp_path, router_cls=ExplodingRouter, raise_server_exceptions=False)
        resp = client.post("/api/dialogflow/detect-intent", json={"text": "hello"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "upstream exploded"}

    def test_unhandled_error_in_development(self, tmp_path):
        client = make_client(
            tmp_path,
            environ={"APP_ENV": "development"},
            router_cls=ExplodingRouter,
            raise_server_exceptions=False,
        )
        body = client.post("/api/dialogflow/detect-intent", json={"text": "hello"}).json()
        assert body["error"] == "upstream exploded"
        assert "RuntimeError" in body["stack"]

    def test_audio_not_implemented(self, tmp_path):
        resp = make_client(tmp_path).post("/api/dialogflow/detect-intent-audio")
        assert resp.status_code == 501
        assert "not implemented" in resp.json()["error"]

    def test_agents(self, tmp_path):
        resp = make_client(tmp_path, environ={"DIALOGFLOW_PROJECT_ID": "bank-agent"}).get(
            "/api/dialogflow/agents"
        )
        body = resp.json()
        assert body["defaultAgent"] == "retail"
        assert body["agents"][0]["key"] == "retail"
        assert body["agents"][0]["id"] == "bank-agent"
        assert body["agents"][0]["name"] == "Retail Banking Assistant"


class TestResolverRouter:
    def test_agent_lookup(self, tmp_path):
        cm = ConfigManager(tmp_path, environ={"DIALOGFLOW_PROJECT_ID": "bank-agent"})
        cm.persist(
            "dialogflow",
            agents={
                "retail": {"name": "Retail"},
                "mortgage": {"id": "mortgage-agent", "name": "Mortgages"},
            },
        )
        router = ResolverRouter(cm)
        assert router.resolve_project(None) == "bank-agent"
        assert router.resolve_project("retail") == "bank-agent"
        assert router.resolve_project("mortgage") == "mortgage-agent"
        assert router.resolve_project("mortgage-agent") == "mortgage-agent"
        assert router.resolve_project("unknown") == "bank-agent"

    def test_remote_resolver_cached_per_project(self, tmp_path):
        cm = ConfigManager(tmp_path, environ={"DIALOGFLOW_PROJECT_ID": "bank-agent"})
        router = ResolverRouter(cm)
        first = router.get_resolver()
        assert isinstance(first, DialogflowResolver)
        assert first.project_id == "bank-agent"
        assert router.get_resolver("retail") is first

    def test_fallback_without_project(self, tmp_path):
        from dialog.fallback import FallbackResolver

        router = ResolverRouter(ConfigManager(tmp_path, environ={}))
        assert isinstance(router.get_resolver("retail"), FallbackResolver)


class TestTTS:
    def test_synthesize(self, tmp_path):
        tts = FakeTTS()
        resp = make_client(tmp_path, tts=tts).post(
            "/api/tts", json={"text": "Hello there", "voiceName": "en-US-Neural2-C"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert base64.b64decode(body["audioContent"]) == b"ID3-fake-mp3"
        assert body["contentType"] == "audio/mpeg"
        assert tts.calls == [("Hello there", "en-US-Neural2-C", None)]

    def test_text_required(self, tmp_path):
        resp = make_client(tmp_path).post("/api/tts", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Text is required"}

    def test_synthesis_failure(self, tmp_path):
        resp = make_client(tmp_path, tts=FakeTTS(fail=True)).post("/api/tts", json={"text": "hi"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to synthesize speech", "details": "quota exceeded"}

    def test_voices(self, tmp_path):
        resp = make_client(tmp_path).get("/api/tts/voices")
        assert resp.json()["voices"][0]["name"] == "en-US-Neural2-F"
