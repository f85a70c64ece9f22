"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets stay out of source code: the .env file is gitignored, and
.env.example provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from payrail.config import settings
    print(settings.SECRET_KEY)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the payment orchestration service.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
      - CONFIG_ENCRYPTION_KEY: Fernet key for encrypting provider secrets at rest

    Webhook secrets default to the empty string. An empty secret means every
    notification for that provider is rejected until it is configured.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Payrail"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # "json" for log shippers, "console" for local development
    LOG_FORMAT: str = "json"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/payrail.db"

    # --- Authentication ---
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Provider config encryption ---
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    CONFIG_ENCRYPTION_KEY: str

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    # --- Outbound provider calls ---
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # Used to build provider callback / redirect URLs
    PUBLIC_APP_URL: str = "http://localhost:3000"
    PUBLIC_API_URL: str = "http://localhost:8000"

    # --- Inbound webhook authenticity ---
    PAYSTACK_WEBHOOK_SECRET: str = ""
    PESAPAL_IPN_SECRET: str = ""
    PESEPAY_WEBHOOK_SECRET: str = ""
    MTN_MOMO_CALLBACK_SECRET: str = ""
    PAYMENTOLOGY_WEBHOOK_SECRET: str = ""

    # --- MTN MoMo ---
    # Product subscription key (Ocp-Apim-Subscription-Key), shared by all countries
    MTN_MOMO_SUBSCRIPTION_KEY: str = ""

    # --- Merchant notifications ---
    MERCHANT_WEBHOOK_TIMEOUT_SECONDS: float = 10.0


settings = Settings()
