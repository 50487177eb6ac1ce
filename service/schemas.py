# pydantic models for the risk engine
# python attributes are snake_case, json payloads use camelCase aliases
# (userAgent, forcedRiskScore, riskFactors, ...) to match the browser producer

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

FACTOR_NAMES = ["location", "device", "behavior", "network", "timing", "amount"]

class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

class Recommendation(str, Enum):
    BLOCK_TRANSACTION = "BLOCK_TRANSACTION"
    REQUIRE_MANUAL_REVIEW = "REQUIRE_MANUAL_REVIEW"
    REQUIRE_2FA = "REQUIRE_2FA"
    SEND_SMS_VERIFICATION = "SEND_SMS_VERIFICATION"
    REQUIRE_EMAIL_VERIFICATION = "REQUIRE_EMAIL_VERIFICATION"
    VERIFY_DEVICE = "VERIFY_DEVICE"
    VERIFY_LOCATION = "VERIFY_LOCATION"

class CamelModel(BaseModel):
    """base model: camelCase on the wire, snake_case in python"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True

# ---------------------------------------------------------------------------
# input signals
# ---------------------------------------------------------------------------

class DeviceFingerprint(CamelModel):
    """browser fingerprint collected by the extension / sdk"""
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    platform: Optional[str] = None
    webgl_vendor: Optional[str] = None
    webgl_renderer: Optional[str] = None
    canvas_fingerprint: Optional[str] = None
    webdriver: Optional[bool] = None
    plugins: Optional[List[str]] = None
    languages: Optional[List[str]] = None

class LocationData(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0, description="meters")
    timestamp: Optional[datetime] = None

class TypingSample(CamelModel):
    timestamp: Optional[datetime] = None
    key: Optional[str] = None
    time_since_last_key: float = 0.0

class BehaviorData(CamelModel):
    """interaction telemetry for the checkout session"""
    clicks: int = Field(0, ge=0)
    keystrokes: int = Field(0, ge=0)
    scrolls: int = Field(0, ge=0)
    mouse_movements: int = Field(0, ge=0)
    typing_patterns: List[TypingSample] = Field(default_factory=list)
    session_duration: float = Field(0, ge=0, description="milliseconds")
    actions_per_minute: float = Field(0, ge=0)

class NetworkData(CamelModel):
    effective_type: Optional[Literal["slow-2g", "2g", "3g", "4g"]] = None
    downlink: Optional[float] = Field(None, ge=0)
    rtt: Optional[float] = Field(None, ge=0)
    save_data: Optional[bool] = None

class TransactionContext(CamelModel):
    """
    everything the engine knows about one transaction
    immutable while it is being analyzed
    """
    amount: float = Field(..., gt=0, allow_inf_nan=False, description="transaction amount")
    currency: str = Field("USD", description="3-letter currency code")
    customer_id: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)
    device_fingerprint: Optional[DeviceFingerprint] = None
    location_data: Optional[LocationData] = None
    behavior_data: Optional[BehaviorData] = None
    network_data: Optional[NetworkData] = None
    timestamp: Optional[datetime] = Field(None, description="analysis time (default: now)")

    # deterministic override for demos and downstream testing
    forced_risk_score: Optional[float] = Field(None, ge=0, le=1)
    scenario: Optional[Literal["normal", "suspicious", "fraudulent"]] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "amount": 99.99,
                "currency": "USD",
                "customerId": "cust_123",
                "merchantId": "merch_45",
                "deviceFingerprint": {
                    "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)",
                    "screenResolution": "1920x1080",
                    "timezone": "America/New_York",
                    "language": "en-US",
                    "platform": "Win32"
                },
                "locationData": {"latitude": 40.7128, "longitude": -74.0060, "accuracy": 20}
            }
        }

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str) -> str:
        if len(value) != 3 or not value.isalpha():
            raise ValueError("must be a 3-letter currency code")
        return value.upper()

# ---------------------------------------------------------------------------
# capability payloads
# ---------------------------------------------------------------------------

class LocationInfo(CamelModel):
    city: str = "Unknown"
    country: str = "Unknown"
    country_code: str = "XX"

class LastLocation(CamelModel):
    """where the customer last transacted from"""
    latitude: float = Field(..., validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(..., validation_alias=AliasChoices("longitude", "lon", "lng"))
    timestamp: datetime

class MerchantStats(CamelModel):
    avg_amount: float = Field(0.0, validation_alias=AliasChoices("avgAmount", "avg_amount"))
    transaction_count: int = Field(0, validation_alias=AliasChoices("transactionCount", "transaction_count"))

# ---------------------------------------------------------------------------
# output
# ---------------------------------------------------------------------------

class RiskFactorResult(CamelModel):
    """score + explanation for one risk dimension"""
    score: float = Field(..., ge=0, le=1)
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    @property
    def flags(self) -> List[str]:
        return list(self.details.get("flags", []))

class RiskAnalysis(CamelModel):
    """result of one analyze() call, owned by the caller afterwards"""
    transaction_id: str
    timestamp: datetime
    merchant_id: str
    customer_id: str
    amount: float
    currency: str
    risk_factors: Dict[str, RiskFactorResult] = Field(default_factory=dict)
    risk_score: float = Field(..., ge=0, le=1)
    risk_level: RiskLevel
    recommendations: List[Recommendation] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)

class BatchItemResult(CamelModel):
    """one slot of a batch response - either an analysis or an error"""
    index: int
    success: bool
    analysis: Optional[RiskAnalysis] = None
    error: Optional[str] = None
    details: List[str] = Field(default_factory=list)
