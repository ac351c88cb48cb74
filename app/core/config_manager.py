"""
Configuration Manager
--------------------
Centralized configuration management using Pydantic Settings.
All application settings are loaded from environment variables with validation.

Security-sensitive values (signing secret, AES key, token lifetimes) are
additionally frozen into a SecurityConfig instance that is handed to each
cryptographic component at construction time.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_AUTH_IGNORE_PATHS = [
    "/",
    "/health",
    "/health/*",
    "/api/docs*",
    "/api/redoc*",
    "/api/openapi.json",
    "/api/auth/login",
    "/api/auth/refresh",
    "/api/auth/register",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/public",
    "/images/*",
]


class SecurityConfig(BaseModel):
    """Immutable cryptographic configuration shared by the auth components."""

    model_config = ConfigDict(frozen=True)

    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_default_expiration_secs: int = 3600
    access_token_expiration_secs: int = 900
    refresh_token_expiration_secs: int = 604800
    invitation_token_expiration_secs: int = 86400
    aes_encryption_key: bytes
    bcrypt_salt_rounds: int = 10
    public_organization_name: str = "Public"

    @field_validator("aes_encryption_key")
    @classmethod
    def validate_key_length(cls, v: bytes) -> bytes:
        """AES-256 needs exactly 32 key bytes."""
        if len(v) != 32:
            raise ValueError("AES encryption key must be 32 bytes")
        return v


class ApplicationSettings(BaseSettings):
    """Main application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application metadata
    app_name: str = Field(default="Nudgyt Identity Core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # FastAPI server configuration
    fastapi_host: str = Field(default="0.0.0.0", description="FastAPI host")
    fastapi_port: int = Field(default=8000, description="FastAPI port")

    # PostgreSQL database configuration
    database_host: str = Field(default="localhost", description="PostgreSQL host")
    database_port: int = Field(default=5432, description="PostgreSQL port")
    database_user: str = Field(default="myuser", description="PostgreSQL user")
    database_password: str = Field(
        default="mypassword", description="PostgreSQL password"
    )
    database_name: str = Field(default="mydb", description="PostgreSQL database name")
    database_pool_size: int = Field(default=20, description="Connection pool size")
    database_max_overflow: int = Field(
        default=10, description="Max overflow connections"
    )

    # Token signing (required)
    jwt_secret_key: str = Field(..., description="Secret used to sign all tokens")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_default_expiration_secs: int = Field(
        default=3600, description="Lifetime of tokens without an explicit expiry"
    )
    access_token_expiration_secs: int = Field(
        default=900, description="Access token lifetime in seconds"
    )
    refresh_token_expiration_secs: int = Field(
        default=604800, description="Refresh token lifetime in seconds"
    )
    invitation_token_expiration_secs: int = Field(
        default=86400, description="Invitation token lifetime in seconds"
    )
    refresh_token_cookie_key: str = Field(
        default="nudgyt-rtkn", description="Name of the refresh token cookie"
    )

    # Field encryption and hashing (required)
    aes_encryption_key: str = Field(
        ..., description="AES-256-GCM key as 64 hexadecimal characters"
    )
    bcrypt_salt_rounds: int = Field(default=10, description="bcrypt cost factor")

    # Tenancy
    public_organization_name: str = Field(
        default="Public", description="Name of the distinguished public organization"
    )
    organization_code_length: int = Field(
        default=6, description="Length of generated organization codes"
    )

    # Frontend and request gate
    frontend_url: str = Field(
        default="http://localhost:3000", description="Frontend base URL"
    )
    auth_ignore_paths: List[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTH_IGNORE_PATHS),
        description="Path patterns reachable without an access token",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is acceptable."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("aes_encryption_key")
    @classmethod
    def validate_aes_encryption_key(cls, v: str) -> str:
        """Validate the AES key decodes to exactly 32 bytes."""
        try:
            raw = bytes.fromhex(v)
        except ValueError:
            raise ValueError("AES encryption key must be hexadecimal")
        if len(raw) != 32:
            raise ValueError("AES encryption key must be 64 hex characters (32 bytes)")
        return v.lower()

    @field_validator("bcrypt_salt_rounds")
    @classmethod
    def validate_bcrypt_salt_rounds(cls, v: int) -> int:
        """bcrypt accepts cost factors between 4 and 31."""
        if not 4 <= v <= 31:
            raise ValueError("bcrypt salt rounds must be between 4 and 31")
        return v

    @field_validator(
        "jwt_default_expiration_secs",
        "access_token_expiration_secs",
        "refresh_token_expiration_secs",
        "invitation_token_expiration_secs",
        "organization_code_length",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Lifetimes and lengths must be positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    def security_config(self) -> SecurityConfig:
        """Freeze the security-relevant settings into a SecurityConfig."""
        return SecurityConfig(
            jwt_secret_key=self.jwt_secret_key,
            jwt_algorithm=self.jwt_algorithm,
            jwt_default_expiration_secs=self.jwt_default_expiration_secs,
            access_token_expiration_secs=self.access_token_expiration_secs,
            refresh_token_expiration_secs=self.refresh_token_expiration_secs,
            invitation_token_expiration_secs=self.invitation_token_expiration_secs,
            aes_encryption_key=bytes.fromhex(self.aes_encryption_key),
            bcrypt_salt_rounds=self.bcrypt_salt_rounds,
            public_organization_name=self.public_organization_name,
        )


# Global settings instance
settings = ApplicationSettings()
