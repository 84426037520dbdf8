from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv
import os

# get_settings reads ENVIRONMENT from the process environment
load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    # Application
    app_name: str = "SprintPilot"
    app_version: str = "1.0.0"
    debug: bool = Field(default=False)

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./sprintpilot.db")
    database_echo: bool = Field(default=False)

    # Authentication & Security
    secret_key: str = Field(default="change-me-in-production")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # AI & LLM Configuration
    llm_provider: str = Field(default="openai")  # openai or ollama
    llm_timeout_seconds: float = Field(default=60.0)

    # OpenAI-compatible API
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-4")
    openai_temperature: float = Field(default=0.3)
    max_tokens: int = Field(default=2000)
    ai_plan_max_tokens: int = Field(default=4000)  # sprint creation plans are long

    # Ollama Configuration
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.2")

    # AI quota
    ai_quota_limit: int = Field(default=50)
    ai_quota_reset_days: int = Field(default=30)

    # Scope tracking
    scope_threshold_pct: float = Field(default=0.20)

    # Workload heatmap
    member_capacity_points: int = Field(default=40)

    # CORS
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"]
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)


# Environment-specific configurations
class DevelopmentConfig(Settings):
    debug: bool = True
    log_level: str = "DEBUG"


class ProductionConfig(Settings):
    debug: bool = False
    database_echo: bool = False
    log_level: str = "WARNING"


class TestingConfig(Settings):
    database_url: str = "sqlite+aiosqlite:///:memory:"
    secret_key: str = "test-secret-key"
    openai_api_key: Optional[str] = "test-openai-key"


def get_settings() -> Settings:
    """Factory function to get settings based on environment"""
    env = os.getenv("ENVIRONMENT", "development").lower()

    if env == "production":
        return ProductionConfig()
    elif env == "testing":
        return TestingConfig()
    else:
        return DevelopmentConfig()


# Global settings instance
settings = get_settings()
