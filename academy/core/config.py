from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    # Sessions last 7 days unless overridden
    access_token_expire_minutes: int = Field(60 * 24 * 7, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field("*", alias="CORS_ORIGINS")

    # Attempts for Student ID / transaction reference generation before giving up
    generated_id_attempts: int = Field(3, alias="GENERATED_ID_ATTEMPTS")

    super_admin_username: Optional[str] = Field(None, alias="SUPER_ADMIN_USERNAME")
    super_admin_password: Optional[str] = Field(None, alias="SUPER_ADMIN_PASSWORD")
    super_admin_email: Optional[str] = Field(None, alias="SUPER_ADMIN_EMAIL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
