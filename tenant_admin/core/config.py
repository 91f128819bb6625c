"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version
    VERSION: str = "0.1.0"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Organization hierarchy
    ORG_MAX_DEPTH: int = 2  # Max ancestors per org (root = 0)
    ORG_PARENT_WALK_LIMIT: int = 10
    ORG_DESCENDANT_CAP: int = 1000
    ORG_TREE_VIEW_MAX: int = 1000

    # Lifecycle
    DELETE_GRACE_DAYS: int = 30
    INVITE_EXPIRY_DAYS: int = 7

    # Guarded transactions (last-owner / last-superadmin checks)
    SERIALIZABLE_RETRIES: int = 3

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
