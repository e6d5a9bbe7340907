"""Loop and service configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)


class LoopSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGENT_LOOP_", env_file=str(ENV_FILE), extra="ignore")

    host: str = "0.0.0.0"
    port: int = 7002

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "AGENT_LOOP_OPENAI_API_KEY"),
    )
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o-mini"
    temperature: float = 0.0
    openai_timeout_s: float = 20.0

    tool_timeout_s: float = 10.0
    parallel_tools: bool = True
    max_steps: int = 25
    termination_sentinel: str = "FINAL ANSWER"

    mock_llm: bool = False
    checkpoint_backend: Literal["memory", "file"] = "memory"
    checkpoint_dir: str = "checkpoints"
    trace_enabled: bool = True
    trace_dir: str = "traces"


@lru_cache(maxsize=1)
def get_settings() -> LoopSettings:
    return LoopSettings()
