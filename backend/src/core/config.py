# --- EXTERNAL IMPORTS ---
import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # ------------------- CORE PROJECT SETTINGS -------------------
    PROJECT_NAME: str = "Chatbot SaaS"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    SERVER_URL: str | None = None
    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # ------------------- SECURITY -------------------
    SECRET_KEY: str = os.getenv("SECRET_KEY", "super-secret-key-change-me")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------- DATABASES -------------------
    POSTGRES_URL: str = "sqlite+aiosqlite:///./chatbot_saas.db"
    DB_ECHO: bool = False
    # Create missing tables on startup (there are no migration files)
    DB_CREATE_TABLES: bool = True

    @property
    def DATABASE_URL(self) -> str:
        url = self.POSTGRES_URL
        if url and url.startswith("postgres") and "?" in url:
            url = url.split("?")[0]
        if url and url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url and url.startswith("postgresql://") and "+asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # Built embeddable widget bundle served at /widget/chat-widget.js
    WIDGET_BUNDLE_PATH: str = "static/chat-widget.iife.js"

    # ------------------- CACHE / RATE LIMIT -------------------
    # Without a Redis URL the chatbot cache and the rate limiter are disabled
    REDIS_URL: str | None = None
    CHATBOT_CACHE_TTL_SECONDS: int = 60
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 900

    # ------------------- AI MODELS -------------------
    LLM_PROVIDER: str = "google"
    LLM_MODEL_NAME: str = "gemini-1.5-flash"
    LLM_BASE_URL: str | None = None
    LLM_API_KEY: str | None = None
    LLM_TIMEOUT_SECONDS: float = 30.0

    GROQ_API_KEY: str | None = None
    GOOGLE_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None

    # ------------------- CONVERSATION PIPELINE -------------------
    CONTEXT_WINDOW_MESSAGES: int = 10

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", env_file_encoding='utf-8')

@lru_cache()
def get_settings():
    return Settings()

settings = get_settings()
