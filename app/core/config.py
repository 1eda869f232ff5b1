from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Allowed gap between boarded and dropped students on a completed trip before an alert is raised
    transport_headcount_tolerance: int = Field(0, alias="TRANSPORT_HEADCOUNT_TOLERANCE")

    # Fallbacks when a school has no library_settings row
    library_default_loan_days: int = Field(14, alias="LIBRARY_DEFAULT_LOAN_DAYS")
    library_default_fine_per_day: int = Field(1, alias="LIBRARY_DEFAULT_FINE_PER_DAY")
    library_grace_period_days: int = Field(0, alias="LIBRARY_GRACE_PERIOD_DAYS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
