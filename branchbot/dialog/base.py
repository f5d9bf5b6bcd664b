from abc import ABC, abstractmethod
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.config import ConfigManager


class WireModel(BaseModel):
    """Base for JSON bodies exchanged with the browser/proxy (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class DetectIntentRequest(WireModel):
    session_id: Optional[str] = None
    text: Optional[str] = None
    language_code: str = "en-US"
    agent_id: Optional[str] = None


class IntentInfo(WireModel):
    display_name: str = "Unknown"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class OutputContext(WireModel):
    name: str
    lifespan_count: int = 0
    parameters: dict[str, Any] = Field(default_factory=dict)


class DetectIntentResponse(WireModel):
    query_text: str = ""
    fulfillment_text: str = ""
    intent: IntentInfo = Field(default_factory=IntentInfo)
    parameters: dict[str, Any] = Field(default_factory=dict)
    output_contexts: list[OutputContext] = Field(default_factory=list)


class AgentInfo(WireModel):
    key: str
    id: str
    name: str
    description: str = ""


class AgentsResponse(WireModel):
    agents: list[AgentInfo] = Field(default_factory=list)
    default_agent: str = ""


class ResolverError(Exception):
    """The intent resolver could not produce a result."""


class ResolverUnavailable(ResolverError):
    """The remote resolver is configured but its client cannot be created."""


class FeatureNotAvailable(ResolverError):
    """The endpoint exists but is intentionally not implemented yet."""


class IntentResolver(ABC):
    """Maps customer text to an intent and a fulfillment reply."""

    @abstractmethod
    async def detect_intent(self, request: DetectIntentRequest) -> DetectIntentResponse:
        ...

    async def close(self):
        pass


class ResolverRouter:
    """Picks the resolver for a request based on config.

    No Dialogflow project configured means every request goes through the
    local fallback matcher.
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self._fallback = None
        self._remote: dict[str, IntentResolver] = {}

    def _get_fallback(self) -> IntentResolver:
        if self._fallback is None:
            from dialog.fallback import FallbackResolver
            self._fallback = FallbackResolver()
        return self._fallback

    def resolve_project(self, agent_id: Optional[str]) -> str:
        """Map an agent key or id from the static table to a project id."""
        config = self.config_manager.config.dialogflow
        if agent_id:
            for key, agent in config.agents.items():
                if agent_id in (key, agent.id):
                    return agent.id or config.project_id
            logger.warning("Unknown agent '{}', using default project.", agent_id)
        return config.project_id

    def get_resolver(self, agent_id: Optional[str] = None) -> IntentResolver:
        if not self.config_manager.is_dialogflow_configured:
            logger.info("DIALOGFLOW_PROJECT_ID not set, returning mock response")
            return self._get_fallback()

        project_id = self.resolve_project(agent_id)
        cached = self._remote.get(project_id)
        if cached is not None:
            return cached

        from dialog.providers.dialogflow_provider import DialogflowResolver
        self._remote[project_id] = DialogflowResolver(project_id=project_id)
        logger.info("Dialogflow resolver initialized for project '{}'.", project_id)
        return self._remote[project_id]

    def list_agents(self) -> AgentsResponse:
        config = self.config_manager.config.dialogflow
        agents = [
            AgentInfo(
                key=key,
                id=agent.id or config.project_id,
                name=agent.name,
                description=agent.description,
            )
            for key, agent in config.agents.items()
        ]
        return AgentsResponse(agents=agents, default_agent=config.default_agent)

    async def close(self):
        for resolver in self._remote.values():
            await resolver.close()
        self._remote.clear()
