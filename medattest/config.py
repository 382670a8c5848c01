"""
Application configuration settings loaded from environment variables.
Uses pydantic_settings for validation and type conversion.
"""
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    """
    Application settings class with environment variable validation.

    Attributes:
        database_url: SQLAlchemy connection string
        secret_key: Secret key used to sign companion approval tokens
        algorithm: Algorithm used for token signing (typically HS256)

        # One-time code settings
        otp_ttl_minutes: Lifetime of an issued challenge
        otp_max_attempts: Wrong submissions tolerated before a challenge is burned

        # Network settings
        request_timeout_seconds: Timeout applied to every outbound round-trip
        app_approval_timeout_seconds: How long to wait for a companion app confirmation

        # Collaborator endpoints (optional - local implementations are used when unset)
        physician_directory_url: Base URL of a remote physician directory
        otp_service_url: Base URL of a remote OTP service
        companion_api_url: Base URL of the companion app backend
        public_ip_lookup_url: IP echo service used as an audit hint

        # Session settings
        session_idle_minutes: Open attestation sessions are discarded after this idle time

        # Email settings
        mail_from: Sender address used for one-time code messages
        frontend_url: URL of the frontend application
    """
    # Database settings
    database_url: str = "sqlite:///./medattest.db"

    # Token settings
    secret_key: str = "change-me"
    algorithm: str = "HS256"

    # One-time code settings
    otp_ttl_minutes: int = 10
    otp_max_attempts: int = 5

    # Network settings
    request_timeout_seconds: float = 30.0
    app_approval_timeout_seconds: float = 300.0

    # Collaborator endpoints
    physician_directory_url: Optional[str] = None
    otp_service_url: Optional[str] = None
    companion_api_url: Optional[str] = None
    public_ip_lookup_url: Optional[str] = None

    # Session settings
    session_idle_minutes: int = 30

    # Email settings
    mail_from: str = "no-reply@medattest.local"

    # Frontend settings
    frontend_url: str = "http://localhost:3000"

    class Config:
        """Configuration for environment variables loading"""
        env_file = ".env"
        case_sensitive = False

# Create settings instance
settings = Settings()
