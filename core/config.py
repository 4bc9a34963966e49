from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", extra="ignore")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./food_rescue.db"
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Pricing
    TAX_RATE: float = 0.0
    SERVICE_CHARGE: float = 0.0
    DELIVERY_CHARGE: float = 50.0

    # Canceled order marketplace
    MARKETPLACE_DEFAULT_DISCOUNT_PERCENT: float = 20.0
    MARKETPLACE_LISTING_HOURS: int = 24
    MARKETPLACE_EXPIRY_INTERVAL_SECONDS: int = 300
    EXPIRY_SWEEPER_ENABLED: bool = True

    PHONE_DEFAULT_REGION: str = "NP"
    EVENT_QUEUE_SIZE: int = 100


settings = Settings()
