import copy
import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001
    environment: str = "production"  # "development" adds stack traces to 500s
    frontend_url: str = "http://localhost:3000"


class AgentConfig(BaseModel):
    id: str = ""  # Dialogflow project id; empty means the default project
    name: str
    description: str = ""


def _default_agents() -> dict[str, AgentConfig]:
    return {
        "retail": AgentConfig(
            name="Retail Banking Assistant",
            description="Balances, transactions, cards, loans and branch information.",
        ),
    }


class DialogflowConfig(BaseModel):
    project_id: str = ""
    language_code: str = "en-US"
    default_agent: str = "retail"
    agents: dict[str, AgentConfig] = Field(default_factory=_default_agents)


class TTSConfig(BaseModel):
    voice_name: str = "en-US-Neural2-F"
    language_code: str = "en-US"
    speaking_rate: float = 1.0
    pitch: float = 0.0


class ClientConfig(BaseModel):
    backend_url: str = ""  # Empty: console client answers with the local matcher
    request_timeout_seconds: float = 10.0
    resolve_timeout_seconds: Optional[float] = 15.0
    speak_replies: bool = True
    player_command: list[str] = Field(
        default_factory=lambda: ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]
    )


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    dialogflow: DialogflowConfig = Field(default_factory=DialogflowConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)


# (env var, section, field)
ENV_OVERRIDES = [
    ("DIALOGFLOW_PROJECT_ID", "dialogflow", "project_id"),
    ("PORT", "server", "port"),
    ("FRONTEND_URL", "server", "frontend_url"),
    ("APP_ENV", "server", "environment"),
    ("BACKEND_URL", "client", "backend_url"),
]


class ConfigManager:
    """Loads config.json from the data dir and layers environment overrides on top."""

    def __init__(self, data_dir: Path, environ: Optional[dict] = None):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._environ = os.environ if environ is None else environ
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _read_file(self) -> dict:
        """Settings stored in config.json, without environment overrides."""
        if not self.config_path.exists():
            logger.info("No existing config found. Using defaults.")
            return {}
        try:
            data = json.loads(self.config_path.read_text())
        except Exception as e:
            logger.error("Failed to load config: {}. Using defaults.", e)
            return {}
        if not isinstance(data, dict):
            logger.error("Config file is not a JSON object. Using defaults.")
            return {}
        logger.info("Configuration loaded from {}", self.config_path)
        return data

    def _load(self) -> AppConfig:
        return AppConfig(**self._apply_env(copy.deepcopy(self._read_file())))

    def _apply_env(self, data: dict) -> dict:
        for var, section, key in ENV_OVERRIDES:
            value = self._environ.get(var)
            if value:
                data.setdefault(section, {})[key] = value
                logger.debug("Config override from {}", var)
        return data

    def persist(self, section: str, **values) -> AppConfig:
        """Store fields of one section in config.json.

        Only what is already in the file plus `values` is written, so an
        environment override never ends up on disk.
        """
        if section not in AppConfig.model_fields:
            raise KeyError(f"Unknown config section: {section}")
        stored = self._read_file()
        stored.setdefault(section, {}).update(values)
        config = AppConfig(**self._apply_env(copy.deepcopy(stored)))

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(json.dumps(stored, indent=2))
        logger.debug("Configuration saved to {}", self.config_path)
        self._config = config
        return config

    @property
    def is_dialogflow_configured(self) -> bool:
        return bool(self.config.dialogflow.project_id)

    @property
    def is_development(self) -> bool:
        return self.config.server.environment == "development"
