"""
MODULE OVERVIEW:
Process-wide settings (pydantic-settings) and the immutable per-client config.

WHAT IS HAPPENING HERE:
`Settings` reads EVENTSOURCE_* environment variables (or a `.env` file) once at
import. `ClientConfig` is what an EventSourceClient actually owns: a frozen
pydantic model, so nothing can change the retry period or timeouts underneath
an attempt that is already running.
"""
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

DEFAULT_RETRY_PERIOD_MS = 60000


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    BASE_URL: str = "http://127.0.0.1:8000"
    RETRY_PERIOD_MS: int = DEFAULT_RETRY_PERIOD_MS

    CONNECT_TIMEOUT_S: float = 10.0
    # None keeps the stream open for as long as the server holds it
    READ_TIMEOUT_S: float | None = None

    class Config:
        env_file = ".env"
        env_prefix = "EVENTSOURCE_"
        env_file_encoding = 'utf-8'
        extra = 'ignore'


class ClientConfig(BaseModel):
    base_url: str = ""
    retry_period_ms: int = Field(default=DEFAULT_RETRY_PERIOD_MS, ge=0)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    read_timeout_s: float | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    verify: bool = True
    follow_redirects: bool = False

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, s: Settings | None = None, **overrides) -> "ClientConfig":
        s = s or settings
        values = {
            "base_url": s.BASE_URL,
            "retry_period_ms": s.RETRY_PERIOD_MS,
            "connect_timeout_s": s.CONNECT_TIMEOUT_S,
            "read_timeout_s": s.READ_TIMEOUT_S,
        }
        values.update(overrides)
        return cls(**values)


settings = Settings()
