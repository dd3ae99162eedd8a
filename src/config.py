""" Runtime configuration, read from CLIXEN_* environment variables. """
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLIXEN_", extra="ignore")

    # n8n engine
    n8n_api_url: str = "http://localhost:5678/api/v1"
    n8n_api_key: Optional[str] = None
    n8n_activate_on_deploy: bool = False

    # Deployment budget and retry policy
    deploy_timeout_seconds: float = Field(default=30.0, gt=0)
    deploy_max_retries: int = Field(default=3, ge=0, le=10)
    deploy_backoff_base: float = Field(default=0.5, ge=0)
    deploy_backoff_max: float = Field(default=8.0, ge=0)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Synthesis LLM (OpenAI-compatible chat completions)
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: Optional[str] = None
    llm_temperature: float = 0.0
    llm_timeout_seconds: float = Field(default=30.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
