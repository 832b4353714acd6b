# paygate/core/config.py
from typing import Literal, Optional
from functools import lru_cache

from pydantic import AnyHttpUrl, ValidationError, field_validator  # AnyHttpUrl stays in pydantic core
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid. Fatal at startup."""


class Settings(BaseSettings):
    PROJECT_NAME: str = "Weather Paygate"
    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 3002
    LOG_LEVEL: str = "INFO"

    # Payment terms (all required)
    PAY_TO_ADDRESS: str
    PRICE: str
    NETWORK: str  # chain identifier + asset symbol, e.g. "eip155:11155111|ETH"
    PRICE_ASSET_ADDRESS: Optional[str] = None
    PRICE_ASSET_DECIMALS: Optional[int] = None

    # Resource identity; CUSTOMER_ID is embedded in the signed resource URL
    PUBLIC_BASE_URL: Optional[str] = "http://localhost:3002"
    CUSTOMER_ID: Optional[str] = None

    # Facilitator
    FACILITATOR_URL: AnyHttpUrl  # validates that it's a URL
    FACILITATOR_SECRET_KEY: str
    FACILITATOR_BACKEND: Literal["http", "x402", "mock"] = "http"
    FACILITATOR_VERIFY_BEFORE_SETTLE: bool = False
    FACILITATOR_TIMEOUT_SECONDS: float = 300.0

    # Browser-facing settings
    CLIENT_ID: Optional[str] = None  # public client id for the wallet widget
    PAYMENT_UI_URL: str = "/wallet.html"
    STATIC_DIR: Optional[str] = None
    CORS_ORIGINS: str = "*"

    # Audit trail
    AUDIT_LOG_ENABLED: bool = True
    AUDIT_LOG_PATH: str = "logs/payment_audit.jsonl"

    @field_validator("PAY_TO_ADDRESS", "PRICE", "NETWORK", "FACILITATOR_SECRET_KEY")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("FACILITATOR_TIMEOUT_SECONDS")
    @classmethod
    def positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment, .env and keyword overrides.

    Raises:
        ConfigurationError: If a required value is absent or invalid
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])} ({error['msg']})"
            for error in e.errors()
        ]
        raise ConfigurationError(
            f"Missing or invalid configuration: {', '.join(problems)}"
        ) from e


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    return load_settings()
