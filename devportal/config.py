from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()

DEFAULT_TEAM_LIMIT = 1000


class Settings(BaseSettings):
    APP_NAME: str = Field("developer-portal-backend", alias="APP_NAME")
    APP_VERSION: str = Field("0.1.0", alias="APP_VERSION")

    LOG_LEVEL: str = Field("INFO", alias="LOG_LEVEL")
    ALLOWED_CORS_ORIGINS: str = Field("*", alias="ALLOWED_CORS_ORIGINS")

    # Member directory
    DATABASE_URL: str = Field("sqlite:///./devportal.db", alias="DATABASE_URL")

    # Descope - optional for development
    DESCOPE_PROJECT_ID: Optional[str] = Field(None, alias="DESCOPE_PROJECT_ID")
    DESCOPE_AUDIENCE: Optional[str] = Field(None, alias="DESCOPE_AUDIENCE")

    # Auth - development-friendly defaults
    AUTH_ALLOW_ANONYMOUS: bool = Field(False, alias="AUTH_ALLOW_ANONYMOUS")

    # AI Core
    AI_CORE_CREDENTIALS: Optional[str] = Field(None, alias="AI_CORE_CREDENTIALS")
    AI_CORE_TEAM_LIMIT: Optional[str] = Field(None, alias="AI_CORE_TEAM_LIMIT")
    AI_CORE_HTTP_TIMEOUT: float = Field(120.0, alias="AI_CORE_HTTP_TIMEOUT")

    # Sonar
    SONAR_HOST: str = Field("", alias="SONAR_HOST")
    SONAR_TOKEN: str = Field("", alias="SONAR_TOKEN")
    SONAR_HTTP_TIMEOUT: float = Field(15.0, alias="SONAR_HTTP_TIMEOUT")

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True, extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        if self.ALLOWED_CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_CORS_ORIGINS.split(",")]

    @property
    def team_limit(self) -> int:
        """Page size used when enumerating groups and teams; falls back on bad input."""
        try:
            limit = int(self.AI_CORE_TEAM_LIMIT) if self.AI_CORE_TEAM_LIMIT else DEFAULT_TEAM_LIMIT
        except ValueError:
            return DEFAULT_TEAM_LIMIT
        return limit if limit > 0 else DEFAULT_TEAM_LIMIT


settings = Settings()
