import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    # Service credential for automation; treated as an admin identity
    api_key: Optional[str] = os.getenv("API_KEY", "super-secret-key")

    # Security settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "10080"))  # 7 days

    # Database settings
    data_file: str = (
        os.getenv("LIBRARY_DB_FILE")
        or os.getenv("LIBRARY_DATA_FILE")
        or "library.db"
    )
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5"))

    # Lending rules
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", "5000"))
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    default_language: str = os.getenv("DEFAULT_LANGUAGE", "Indonesian")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Lending Service")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
