"""Core application configuration and settings.

Handles environment variables, JWT secrets, database and Redis connections.
"""
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


# Load environment variables
ROOT = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT / ".env")
load_dotenv()

DEFAULT_JWT_SECRET = "development-secret-key-change-in-production"
DEFAULT_JWT_REFRESH_SECRET = "development-refresh-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = Field(
        default=f"sqlite:///{ROOT / 'healthportal.sqlite'}",
        alias="DATABASE_URL"
    )
    db_timeout_seconds: float = Field(default=5.0, alias="DB_TIMEOUT_SECONDS")

    # Redis Configuration (token revocation list)
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    token_revocation_enabled: bool = Field(default=False, alias="TOKEN_REVOCATION_ENABLED")

    # JWT Authentication
    jwt_secret_key: str = Field(default=DEFAULT_JWT_SECRET, alias="JWT_SECRET_KEY")
    jwt_refresh_secret_key: str = Field(
        default=DEFAULT_JWT_REFRESH_SECRET,
        alias="JWT_REFRESH_SECRET_KEY"
    )
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=10080, alias="ACCESS_TOKEN_EXPIRE_MINUTES")  # 7 days
    refresh_token_expire_minutes: int = Field(default=43200, alias="REFRESH_TOKEN_EXPIRE_MINUTES")  # 30 days

    # Credentials
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS")
    password_reset_expire_minutes: int = Field(default=60, alias="PASSWORD_RESET_EXPIRE_MINUTES")
    auto_verify_email: bool = Field(default=True, alias="AUTO_VERIFY_EMAIL")
    seed_demo_users: bool = Field(default=False, alias="SEED_DEMO_USERS")
    demo_user_password: str = Field(default="demo123", alias="DEMO_USER_PASSWORD")

    # Outbound email (password reset / verification links)
    smtp_host: Optional[str] = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from_email: str = Field(default="noreply@healthportal.local", alias="SMTP_FROM_EMAIL")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Application Settings
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # API Settings
    api_prefix: str = Field(default="/api", alias="API_PREFIX")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        alias="CORS_ORIGINS"
    )

    class Config:
        case_sensitive = False
        env_file = ".env"
        populate_by_name = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def smtp_config(self) -> Optional[dict]:
        """SMTP settings in the shape the email sender expects, or None if unset."""
        if not self.smtp_host:
            return None
        config = {
            "host": self.smtp_host,
            "port": self.smtp_port,
            "from_email": self.smtp_from_email,
        }
        if self.smtp_username and self.smtp_password:
            config["username"] = self.smtp_username
            config["password"] = self.smtp_password
        return config

    def validate_required_settings(self):
        """Validate that required settings are present."""
        if self.jwt_secret_key == self.jwt_refresh_secret_key:
            raise ValueError(
                "JWT_SECRET_KEY and JWT_REFRESH_SECRET_KEY must be different."
            )
        if self.is_production:
            if self.jwt_secret_key == DEFAULT_JWT_SECRET:
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a secure value in production."
                )
            if self.jwt_refresh_secret_key == DEFAULT_JWT_REFRESH_SECRET:
                raise ValueError(
                    "JWT_REFRESH_SECRET_KEY must be set to a secure value in production."
                )
        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")


# Global settings instance
settings = Settings()


# Validate settings on module import (only in non-test environments)
if settings.environment != "test":
    try:
        settings.validate_required_settings()
    except ValueError as e:
        print(f"Configuration Error: {e}")
        # Don't raise in development to allow partial setup
        if settings.is_production:
            raise
