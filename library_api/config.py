import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "10"))

    # Loan rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))

    # Password hashing (scrypt cost parameters)
    password_hash_n: int = int(os.getenv("PASSWORD_HASH_N", "16384"))
    password_hash_r: int = int(os.getenv("PASSWORD_HASH_R", "8"))
    password_hash_p: int = int(os.getenv("PASSWORD_HASH_P", "1"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Management API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
