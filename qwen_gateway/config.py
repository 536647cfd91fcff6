from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Upstream (Qwen)
    QWEN_API_URL: str = Field(default="https://api.qwen.ai")
    QWEN_API_PATH: str = Field(default="/on_example")
    QWEN_API_KEY: str | None = None
    QWEN_INFERENCE_ENDPOINT: str = Field(default="https://router.huggingface.co/v1")
    QWEN_MODEL: str = Field(default="Qwen/Qwen2.5-VL-7B-Instruct")

    # Fixed generation parameters, never taken from the request
    QWEN_MAX_TOKENS: int = Field(default=1024, gt=0)
    QWEN_TEMPERATURE: float = Field(default=0.7, ge=0.0)
    QWEN_DO_SAMPLE: bool = Field(default=True)
    QWEN_STREAM: bool = Field(default=False)

    UPSTREAM_BACKEND: Literal["http", "inference"] = Field(default="http")
    UPSTREAM_TIMEOUT: float = Field(default=60.0, gt=0)

    # Ingress
    CORS_ORIGINS: str = Field(default="*")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=15 * 60, gt=0)
    RATE_LIMIT_MAX: int = Field(default=100, ge=0)

    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000)

    APP_NAME: str = Field(default="Qwen Chat Gateway")
    APP_ENV: str = Field(default="dev")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False)

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        return ["*"] if origins == ["*"] else origins


@lru_cache
def get_settings() -> Settings:
    return Settings()
