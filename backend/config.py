from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/auth.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3001", "http://127.0.0.1:3001"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "Portal Auth"
    APP_VERSION: str = _load_version()
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Identity provider (Azure AD / Microsoft Graph) ─────────────────
    AZURE_TENANT_ID: Optional[str] = None
    AZURE_CLIENT_ID: Optional[str] = None
    AZURE_CLIENT_SECRET: Optional[str] = None
    REDIRECT_URI: str = "http://localhost:3001/auth/callback"
    AUTHORITY_HOST: str = "https://login.microsoftonline.com"
    GRAPH_API_URL: str = "https://graph.microsoft.com/v1.0"
    OAUTH_SCOPES: list[str] = ["User.Read", "User.ReadBasic.All"]
    IDP_TIMEOUT_SECONDS: float = 10.0
    # App-only (client credentials) access for the directory sync
    GRAPH_APP_SCOPE: str = "https://graph.microsoft.com/.default"
    DIRECTORY_PAGE_SIZE: int = 100

    # ── Sessions ───────────────────────────────────────────────────────
    SESSION_COOKIE_NAME: str = "auth_token"
    SESSION_TTL_HOURS: int = 24
    SESSION_SWEEP_INTERVAL_SECONDS: int = 3600

    # Signed OAuth state parameter
    STATE_SECRET: str = "change-me-in-production"
    STATE_ALGORITHM: str = "HS256"
    STATE_EXPIRATION_MINUTES: int = 10
    STATE_COOKIE_NAME: str = "oauth_state"

    # ── Routing ────────────────────────────────────────────────────────
    LOGIN_PATH: str = "/auth/login"
    PENDING_PATH: str = "/auth/pending"
    DEFAULT_LANDING_PATH: str = "/dashboard"
    AUDITOR_LANDING_PATH: str = "/auditor/selection"

    @property
    def cookie_secure(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def authority_url(self) -> str:
        return f"{self.AUTHORITY_HOST.rstrip('/')}/{self.AZURE_TENANT_ID or 'common'}"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
