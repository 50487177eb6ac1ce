# configuration management using pydantic settings
# reads from .env file and provides type-safe config

from pydantic_settings import BaseSettings
from typing import Dict, Optional

class Settings(BaseSettings):
    """app configuration loaded from environment variables"""

    # storage (None = in-memory store, otherwise an async sqlalchemy url)
    database_url: Optional[str] = None

    # factor weights for the weighted average (must cover all six factors)
    factor_weights: Dict[str, float] = {
        "location": 0.20,
        "device": 0.30,
        "behavior": 0.30,
        "network": 0.10,
        "timing": 0.05,
        "amount": 0.05,
    }

    # aggregation
    multi_factor_boost: float = 0.2      # added when several factors are high
    high_factor_threshold: float = 0.7   # factor score > this counts as "high"
    neutral_score: float = 0.5           # used when no factor is usable

    # risk level boundaries (score < medium → LOW, < high → MEDIUM, else HIGH)
    medium_risk_threshold: float = 0.4
    high_risk_threshold: float = 0.7

    # recommendation thresholds (strictly greater than)
    block_threshold: float = 0.8
    two_factor_threshold: float = 0.6
    email_verification_threshold: float = 0.4

    # location heuristics
    high_risk_radius_km: float = 1000.0
    max_travel_speed_kmh: float = 500.0
    low_accuracy_meters: float = 1000.0

    # timing heuristics
    recent_window_hours: int = 1
    rapid_transaction_count: int = 5

    # batch + capability limits
    max_batch_size: int = 100
    capability_timeout_seconds: Optional[float] = None  # engine itself imposes none
    allow_forced_score: bool = True

    # in-memory history store caps (oldest entries are dropped first)
    memory_store_max_analyses: int = 10000
    memory_store_max_customers: int = 10000
    memory_store_max_events_per_customer: int = 500

    # cache ttl (time-to-live in seconds)
    merchant_cache_ttl: int = 1800  # 30 minutes for merchant stats (slow to change)

    # api settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    class Config:
        env_file = ".env"  # load from .env file
        case_sensitive = False  # DATABASE_URL and database_url both work
        extra = 'ignore'  # ignore extra fields in .env

# global settings instance
settings = Settings()
