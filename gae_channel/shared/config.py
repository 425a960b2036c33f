"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Where it fits: every channel backend and the CLI read their timings and
gateway coordinates from here.

WHAT IS HAPPENING HERE:
The gateway host, the poll backoff schedule and the dev-server poll wait are
declared once. Any of them can be overridden from the environment or a `.env`
file, e.g. `BACKOFF_MAX_S=10 gae-channel stream ...`.
"""
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    # Production gateway
    TALK_HOST: str = "talkgadget.google.com"
    TALK_PATH: str = "/talkgadget/"
    CHANNEL_PATH: str = "/_ah/channel/"

    # Long poll backoff: reset to base after a productive round, doubled otherwise
    BACKOFF_BASE_S: float = 0.1
    BACKOFF_MAX_S: float = 60.0

    # Development server
    DEV_POLL_WAIT_S: float = 0.5

    # None means no client-side timeout; the gateway decides when a poll ends
    HTTP_TIMEOUT_S: float | None = None

    # Whole-stream retry used by the CLI
    RETRY_BASE_DELAY_S: float = 1.0
    RETRY_MAX_DELAY_S: float = 32.0

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
