# pjn_sync/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "PJN Sync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./pjn_sync.db"
    DATABASE_AUTO_CREATE: bool = True  # create tables on startup (dev); use migrations in production

    # AWS Configuration
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "sa-east-1"

    # S3 (downloaded PDFs)
    S3_BUCKET_NAME: str = "pjn-documents"
    PJN_DOCUMENTS_PREFIX: str = "pjn"

    # Session store
    SESSION_STORE_BACKEND: str = "local"  # local | s3
    SESSION_LOCAL_DIR: str = "./storage"
    SESSION_S3_BUCKET_NAME: str = "pjn-sessions"
    SESSION_FILE_NAME: str = "session.json"

    # PJN SSO / portal
    PJN_SSO_BASE_URL: str = "https://sso.pjn.gov.ar"
    PJN_SSO_REALM: str = "pjn"
    PJN_SSO_CLIENT_ID: str = "pjn-portal"
    PJN_PORTAL_BASE_URL: str = "https://portalpjn.pjn.gov.ar"
    PJN_SCW_BASE_URL: str = "https://scw.pjn.gov.ar"
    PJN_COOKIE_DOMAIN: str = ".pjn.gov.ar"

    # PJN events API
    PJN_API_BASE_URL: str = "https://api.pjn.gov.ar"
    PJN_EVENTS_ENDPOINT: str = "/api/v1/eventos"
    PJN_PDF_ENDPOINT: str = "/api/v1/eventos/{event_id}/pdf"
    EVENTS_PAGE_SIZE: int = 20
    MAX_PAGES_PER_SYNC: int = 10

    # Network timeouts
    PJN_CONNECT_TIMEOUT_SECONDS: float = 10.0
    PJN_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Playwright
    PLAYWRIGHT_HEADLESS: bool = True
    PLAYWRIGHT_NAVIGATION_TIMEOUT_MS: int = 30000
    SEARCH_MAX_PAGES: int = 10
    TAB_MAX_PAGES: int = 20
    PJN_SEARCH_MODE: str = "browser"  # browser | http

    # Session tokens
    TOKEN_REFRESH_BUFFER_SECONDS: int = 60

    # Service-to-service authentication (X-Service-Auth header)
    SERVICE_AUTH_SECRET: str = ""

    # Fernet key for stored PJN passwords
    PJN_CREDENTIALS_ENCRYPTION_KEY: str = ""

    # Participant matching
    MATCH_HIGH_CONFIDENCE_THRESHOLD: float = 0.95
    MATCH_MEDIUM_CONFIDENCE_THRESHOLD: float = 0.85

    # Case history sync
    INITIAL_SYNC_MOVEMENTS_LIMIT: int = 50
    INCREMENTAL_SYNC_MOVEMENTS_LIMIT: int = 5

    # Background tasks
    TASK_QUEUE_MODE: str = "background"  # background | inline

    # Raw markup archive for diagnosing portal layout changes
    RAW_HTML_ARCHIVE_ENABLED: bool = False
    RAW_HTML_ARCHIVE_DIR: str = "./debug-html"

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    @field_validator("PJN_SSO_BASE_URL", "PJN_PORTAL_BASE_URL", "PJN_SCW_BASE_URL", "PJN_API_BASE_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def pjn_sso_auth_url(self) -> str:
        """OpenID Connect authorization entry point for the portal client."""
        return (
            f"{self.PJN_SSO_BASE_URL}/auth/realms/{self.PJN_SSO_REALM}/protocol/openid-connect/auth"
            f"?client_id={self.PJN_SSO_CLIENT_ID}&response_type=code"
            f"&redirect_uri={self.PJN_PORTAL_BASE_URL}/"
        )

    @property
    def pjn_token_url(self) -> str:
        return f"{self.PJN_SSO_BASE_URL}/auth/realms/{self.PJN_SSO_REALM}/protocol/openid-connect/token"

    @property
    def scw_search_url(self) -> str:
        return f"{self.PJN_SCW_BASE_URL}/scw/consultaListaRelacionados.seam"

    @property
    def scw_expediente_url(self) -> str:
        return f"{self.PJN_SCW_BASE_URL}/scw/expediente.seam"

    @property
    def scw_sso_auth_url(self) -> str:
        """SSO entry point that lands on the SCW search page after login."""
        return (
            f"{self.PJN_SSO_BASE_URL}/auth/realms/{self.PJN_SSO_REALM}/protocol/openid-connect/auth"
            f"?client_id=pjn-scw&response_type=code&redirect_uri={self.scw_search_url}"
        )


# Create settings instance
settings = Settings()
