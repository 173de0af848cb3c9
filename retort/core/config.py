from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_PATH = "~/.retort/config.yaml"
DEFAULT_DATABASE_PATH = "~/.retort/data/retort.db"


def config_file_path() -> Path:
    """Return the user config file location, expanded against the current HOME."""

    return Path(CONFIG_PATH).expanduser()


class Settings(BaseSettings):
    """Settings loaded from the environment and ~/.retort/config.yaml."""

    database_path: str = Field(default=DEFAULT_DATABASE_PATH, alias="RETORT_DATABASE_PATH")
    stream: Optional[bool] = Field(default=None, alias="RETORT_STREAM")
    log_level: str = Field(default="WARNING", alias="RETORT_LOG_LEVEL")
    llm_provider: str = Field(default="gemini", alias="RETORT_LLM_PROVIDER")
    llm_model: str = Field(default="gemini-2.5-flash", alias="RETORT_LLM_MODEL")
    llm_base_url: Optional[str] = Field(default=None, alias="RETORT_LLM_BASE_URL")
    llm_max_tokens: int = Field(default=8512, alias="RETORT_LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.7, alias="RETORT_LLM_TEMPERATURE")
    llm_timeout_sec: float = Field(default=90, alias="RETORT_LLM_TIMEOUT_SEC")
    google_api_key: str = Field(default="", alias="GOOGLE_API_KEY")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    # NOTE: MOCK_LLM only needs to be present; its value is not interpreted.
    mock_llm: Optional[str] = Field(default=None, alias="MOCK_LLM")
    mock_llm_content: Optional[str] = Field(default=None, alias="MOCK_LLM_CONTENT")
    prompts_dir: Optional[str] = Field(default=None, alias="RETORT_PROMPTS_DIR")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=config_file_path())
        return (init_settings, env_settings, yaml_settings)

    def expanded_database_path(self) -> Path:
        """Return the database path with ``~`` expanded."""

        return Path(self.database_path).expanduser()

    def database_url(self) -> str:
        """Return the async SQLAlchemy URL for the configured database file."""

        return f"sqlite+aiosqlite:///{self.expanded_database_path()}"

    def mock_enabled(self) -> bool:
        """Whether model calls should be answered without network access."""

        return self.mock_llm is not None or self.mock_llm_content is not None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
