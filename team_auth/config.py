from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # JWT signing for sessions and one-time links
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ONE_TIME_TOKEN_EXPIRE_MINUTES: int = 60

    # Password policy for accounts created with a password
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_REQUIRE_UPPERCASE: bool = False
    PASSWORD_REQUIRE_LOWERCASE: bool = False
    PASSWORD_REQUIRE_NUMBERS: bool = False
    PASSWORD_REQUIRE_SPECIAL_CHARS: bool = False
    PASSWORD_SPECIAL_CHARS: str = "!@#$%^&*()_+-=[]{}|;:,.<>?"

    # Teams and invitations
    INVITE_EXPIRE_HOURS: int = 24

    # Impersonation
    IMPERSONATION_TTL_MINUTES: int = 30
    IMPERSONATION_MIN_REASON_LENGTH: int = 10
    IMPERSONATION_SINGLE_ACTIVE_SESSION: bool = True

    # Identity provider retries (dependency failures only)
    IDP_MAX_ATTEMPTS: int = 3
    IDP_RETRY_BACKOFF_SECONDS: float = 0.2

    # Application
    APP_NAME: str = "Team Auth API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = ""
    CORS_ALLOW_CREDENTIALS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
