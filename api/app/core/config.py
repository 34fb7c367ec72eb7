"""Application configuration."""
import sys
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql://risk_user:risk_pass@db:5432/risk_db"
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    JWT_ISSUER: str | None = None
    JWT_AUDIENCE: str | None = None

    # Environment configuration
    ENVIRONMENT: str = "development"  # "development" or "production"
    LOG_LEVEL: str = "INFO"

    # CORS configuration - comma-separated origins
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5174"

    # Scoring scales
    CONTROL_SCORE_MAX: int = 3  # S_max for design/implementation/monitoring/evaluation
    RISK_SCALE_MAX: int = 5  # N for the likelihood/impact ordinal scale

    # Concurrency and store round trips
    LOCK_TIMEOUT_SECONDS: float = 10.0
    DB_STATEMENT_TIMEOUT_MS: int = 5000
    READ_RETRY_ATTEMPTS: int = 2
    READ_RETRY_BASE_DELAY: float = 0.05

    class Config:
        env_file = ".env"

    def get_cors_origins(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def validate_production_settings(self) -> None:
        """Validate settings for production environment.

        Raises SystemExit if critical settings are misconfigured.
        """
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY == "dev-secret-key-change-in-production":
                print("FATAL: SECRET_KEY must be changed in production!", file=sys.stderr)
                print("Set a secure random SECRET_KEY environment variable.", file=sys.stderr)
                sys.exit(1)

            if self.CONTROL_SCORE_MAX < 1 or self.RISK_SCALE_MAX < 2:
                print("FATAL: CONTROL_SCORE_MAX must be >= 1 and RISK_SCALE_MAX >= 2", file=sys.stderr)
                sys.exit(1)


settings = Settings()
# Validate on startup
settings.validate_production_settings()
