import os
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from typing import Optional, List

# Load .env file explicitly (DOTENV_PATH wins over the project default)
env_path = Path(os.getenv("DOTENV_PATH") or Path(__file__).parent.parent.parent / ".env")
load_dotenv(dotenv_path=env_path)

# =====================================================
# API endpoints
# =====================================================

GMAIL_API_BASE_URL: str = "https://gmail.googleapis.com/gmail/v1"
OAUTH_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
OAUTH_AUTH_URL: str = "https://accounts.google.com/o/oauth2/auth"

GMAIL_SCOPES: List[str] = [
    "https://www.googleapis.com/auth/gmail.readonly",
]

# Headers requested when falling back to format=metadata
GMAIL_METADATA_HEADERS: List[str] = ["From", "To", "Cc", "Subject", "Date"]

# =====================================================
# Other constants
# =====================================================
DEFAULT_TOKEN_EXPIRY_SECONDS: int = 600
LOG_DIR: str = os.getenv("LOG_DIR", "./logs")


class Settings(BaseSettings):
    API_TOKEN: Optional[str] = None
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    # Gmail OAuth (configure for real runs)
    GMAIL_CLIENT_ID: str | None = None
    GMAIL_CLIENT_SECRET: str | None = None
    GMAIL_REFRESH_TOKEN: str | None = None
    GMAIL_ACCESS_TOKEN: str | None = None
    GMAIL_SCOPES: List[str] = GMAIL_SCOPES
    GMAIL_USER_ID: str = "me"

    # Lifetime assumed for GMAIL_ACCESS_TOKEN supplied at startup
    TOKEN_EXPIRY_SECONDS: int = DEFAULT_TOKEN_EXPIRY_SECONDS

    # Gmail REST API
    GMAIL_API_BASE_URL: str = GMAIL_API_BASE_URL
    OAUTH_TOKEN_URL: str = OAUTH_TOKEN_URL
    OAUTH_AUTH_URL: str = OAUTH_AUTH_URL
    GMAIL_METADATA_HEADERS: List[str] = GMAIL_METADATA_HEADERS
    HTTP_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_MAX_RESULTS: int = 10
    # Per listing; Gmail answers 429 when too many fetches run at once
    MAX_CONCURRENT_FETCHES: int = 10

    # Logging
    LOG_DIR: str = LOG_DIR
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"
        env_file_encoding = "utf-8"

    def missing_gmail_credentials(self) -> List[str]:
        """Names of the required Gmail OAuth variables that are not set."""
        required = {
            "GMAIL_CLIENT_ID": self.GMAIL_CLIENT_ID,
            "GMAIL_CLIENT_SECRET": self.GMAIL_CLIENT_SECRET,
            "GMAIL_REFRESH_TOKEN": self.GMAIL_REFRESH_TOKEN,
        }
        return [name for name, value in required.items() if not value]

settings = Settings()
