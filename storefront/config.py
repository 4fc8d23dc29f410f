# storefront/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar, List
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./storefront.db"

    # Admin bearer tokens
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Stripe Checkout
    STRIPE_API_URL: str = "https://api.stripe.com"
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT_SECONDS: float = 10.0
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_ALLOWED_COUNTRIES: str = "DE,AT,CH"
    DEFAULT_CURRENCY: str = "eur"

    # Key material for PII columns on orders
    ENCRYPTION_KEY: str = "dev-encryption-key-change-me"

    CART_TTL_MINUTES: int = 30
    RESERVATION_TTL_MINUTES: int = 30

    SERVICE_NAME: str = "storefront"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:5173"

    class Config:
        env_file: ClassVar[str] = str(env_path)

    @property
    def allowed_countries(self) -> List[str]:
        return [c.strip().upper() for c in self.STRIPE_ALLOWED_COUNTRIES.split(",") if c.strip()]

settings = Settings()
