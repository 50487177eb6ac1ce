# factor analyzers - one per risk dimension
# each takes the raw signals for its dimension, calls its capabilities and
# returns a RiskFactorResult. missing input never raises: every analyzer has
# a documented default score for that case

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Type
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np
from pydantic import BaseModel, ValidationError

from service.capabilities import CapabilitySet, LookupTracker
from service.config import settings
from service.geo import implied_speed_kmh
from service.schemas import (
    BehaviorData,
    DeviceFingerprint,
    LastLocation,
    LocationData,
    LocationInfo,
    MerchantStats,
    NetworkData,
    RiskFactorResult,
    TransactionContext,
    TypingSample,
)

logger = logging.getLogger(__name__)

# default scores when a whole signal group is missing
NO_LOCATION_SCORE = 0.5
NO_DEVICE_SCORE = 0.6
NO_BEHAVIOR_SCORE = 0.5
NO_NETWORK_SCORE = 0.3

BASE_SCORE = 0.1

HEADLESS_MARKERS = ("HeadlessChrome", "PhantomJS", "Selenium", "Puppeteer")

# added to a factor's flags when one of its lookups failed
LOOKUP_UNAVAILABLE = "lookup_unavailable"

def _clamp(score: float) -> float:
    # rounding keeps sums like 0.1 + 0.4 + 0.2 exactly at the 0.7 boundary
    return round(max(0.0, min(score, 1.0)), 4)

def _result(score: float, reason: str, details: Dict[str, Any], tracker: LookupTracker) -> RiskFactorResult:
    if tracker.failed:
        details['degradedLookups'] = list(tracker.failed)
        details.setdefault('flags', []).append(LOOKUP_UNAVAILABLE)
    return RiskFactorResult(score=_clamp(score), reason=reason, details=details)

def _coerce(model: Type[BaseModel], value: Any, tracker: LookupTracker, name: str):
    """turn a capability's dict answer into a model, None if unusable"""
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        logger.warning("capability %s returned an unusable value: %s", name, e)
        tracker.failed.append(name)
        return None

# ---------------------------------------------------------------------------
# location
# ---------------------------------------------------------------------------

async def analyze_location(
    location_data: Optional[LocationData],
    customer_id: str,
    capabilities: CapabilitySet,
    fallback_time: Optional[datetime] = None
) -> RiskFactorResult:
    """
    score where the transaction comes from

    base 0.1, +0.4 flagged country, +0.3 vpn, +0.2 impossible travel since
    the customer's last known location, +0.1 low-accuracy fix

    args:
        location_data: browser geolocation fix (None = not shared)
        customer_id: customer making the transaction
        capabilities: lookups to use
        fallback_time: time of the fix when location_data has no timestamp
    """
    if location_data is None:
        return RiskFactorResult(score=NO_LOCATION_SCORE, reason="no location data provided")

    tracker = LookupTracker(capabilities)
    lat, lon = location_data.latitude, location_data.longitude

    info = _coerce(
        LocationInfo,
        await tracker.call("resolve_location", lat, lon, default=None),
        tracker, "resolve_location"
    ) or LocationInfo()

    is_high_risk = bool(await tracker.call("is_high_risk_country", lat, lon, default=False))
    is_vpn = bool(await tracker.call("detect_vpn", location_data, default=False))
    is_velocity_anomaly = await _check_velocity_anomaly(
        location_data, customer_id, tracker, fallback_time or datetime.now()
    )
    low_accuracy = (
        location_data.accuracy is not None
        and location_data.accuracy > settings.low_accuracy_meters
    )

    score = BASE_SCORE
    if is_high_risk:
        score += 0.4
    if is_vpn:
        score += 0.3
    if is_velocity_anomaly:
        score += 0.2
    if low_accuracy:
        score += 0.1

    details = {
        'isHighRiskCountry': is_high_risk,
        'isVPN': is_vpn,
        'isVelocityAnomaly': is_velocity_anomaly,
        'accuracy': location_data.accuracy,
        'city': info.city,
        'country': info.country,
        'countryCode': info.country_code,
    }
    reason = _location_reason(is_high_risk, is_vpn, is_velocity_anomaly)
    return _result(score, reason, details, tracker)

async def _check_velocity_anomaly(
    location_data: LocationData,
    customer_id: str,
    tracker: LookupTracker,
    fallback_time: datetime
) -> bool:
    """true when reaching this fix from the last one needs > max_travel_speed_kmh"""
    last = _coerce(
        LastLocation,
        await tracker.call("last_known_location", customer_id, default=None),
        tracker, "last_known_location"
    )
    if last is None:
        return False

    speed = implied_speed_kmh(
        last.latitude, last.longitude, last.timestamp,
        location_data.latitude, location_data.longitude,
        location_data.timestamp or fallback_time
    )
    return speed > settings.max_travel_speed_kmh

def _location_reason(is_high_risk: bool, is_vpn: bool, is_velocity_anomaly: bool) -> str:
    reasons = []
    if is_high_risk:
        reasons.append("high-risk country")
    if is_vpn:
        reasons.append("VPN detected")
    if is_velocity_anomaly:
        reasons.append("impossible travel velocity")
    return ", ".join(reasons) if reasons else "location appears normal"

# ---------------------------------------------------------------------------
# device
# ---------------------------------------------------------------------------

def is_headless_browser(fingerprint: DeviceFingerprint) -> bool:
    user_agent = fingerprint.user_agent or ""
    return any(marker in user_agent for marker in HEADLESS_MARKERS) or fingerprint.webdriver is True

def is_suspicious_configuration(fingerprint: DeviceFingerprint) -> bool:
    """empty plugin list, empty language list or no screen resolution"""
    return (
        (fingerprint.plugins is not None and len(fingerprint.plugins) == 0)
        or (fingerprint.languages is not None and len(fingerprint.languages) == 0)
        or not fingerprint.screen_resolution
    )

async def analyze_device(
    fingerprint: Optional[DeviceFingerprint],
    customer_id: str,
    capabilities: CapabilitySet
) -> RiskFactorResult:
    """
    score the browser the transaction comes from

    base 0.1, +0.7 headless/automation, +0.4 device not seen for this
    customer, +0.3 suspicious configuration
    """
    if fingerprint is None:
        return RiskFactorResult(score=NO_DEVICE_SCORE, reason="no device data provided")

    tracker = LookupTracker(capabilities)
    score = BASE_SCORE
    flags: List[str] = []

    if is_headless_browser(fingerprint):
        score += 0.7
        flags.append('headless_browser')

    # a failed lookup counts as an unknown device
    is_known = bool(await tracker.call("is_known_device", fingerprint, customer_id, default=False))
    if not is_known:
        score += 0.4
        flags.append('unknown_device')

    if is_suspicious_configuration(fingerprint):
        score += 0.3
        flags.append('suspicious_config')

    details = {
        'isKnownDevice': is_known,
        'flags': flags,
        'isHeadless': 'headless_browser' in flags,
    }
    reason = f"device flags: {', '.join(flags)}" if flags else "device appears normal"
    return _result(score, reason, details, tracker)

# ---------------------------------------------------------------------------
# behavior
# ---------------------------------------------------------------------------

def is_automated_behavior(behavior: BehaviorData) -> bool:
    return (
        behavior.actions_per_minute > 50
        or (behavior.clicks == 0 and behavior.keystrokes == 0)
        or (behavior.clicks == 0 and behavior.mouse_movements == 0)
        or (behavior.session_duration < 2000 and behavior.clicks == 0)
    )

def is_suspicious_typing(typing_patterns: Iterable[TypingSample]) -> bool:
    """coefficient of variation of inter-key intervals above 0.5 (needs 5+ samples)"""
    samples = list(typing_patterns or [])
    if len(samples) < 5:
        return False

    intervals = np.array([s.time_since_last_key for s in samples], dtype=float)
    mean = intervals.mean()
    if mean <= 0:
        return False
    return float(intervals.std() / mean) > 0.5

def is_human_like_behavior(behavior: BehaviorData) -> bool:
    return (
        behavior.clicks > 0
        and behavior.keystrokes > 0
        and behavior.scrolls > 0
        and behavior.mouse_movements > 0
        and behavior.clicks < 1000
    )

async def analyze_behavior(behavior: Optional[BehaviorData]) -> RiskFactorResult:
    """
    score the interaction telemetry of the session

    base 0.1, +0.8 automation pattern, +0.5 irregular typing,
    +0.4 too fast or +0.3 too slow, +0.5 missing human interaction mix
    """
    if behavior is None:
        return RiskFactorResult(score=NO_BEHAVIOR_SCORE, reason="no behavior data provided")

    score = BASE_SCORE
    flags: List[str] = []

    if is_automated_behavior(behavior):
        score += 0.8
        flags.append('automated_behavior')

    if is_suspicious_typing(behavior.typing_patterns):
        score += 0.5
        flags.append('suspicious_typing')

    if behavior.actions_per_minute > 50:
        score += 0.4
        flags.append('too_fast')
    elif behavior.actions_per_minute < 5:
        score += 0.3
        flags.append('too_slow')

    if not is_human_like_behavior(behavior):
        score += 0.5
        flags.append('non_human_behavior')

    details = {
        'flags': flags,
        'actionsPerMinute': behavior.actions_per_minute,
        'sessionDuration': behavior.session_duration,
    }
    reason = f"behavior flags: {', '.join(flags)}" if flags else "behavior appears normal"
    return RiskFactorResult(score=_clamp(score), reason=reason, details=details)

# ---------------------------------------------------------------------------
# network
# ---------------------------------------------------------------------------

def is_mobile_hotspot(network: NetworkData) -> bool:
    return network.effective_type == '4g' and network.downlink is not None and network.downlink < 1

async def analyze_network(
    network: Optional[NetworkData],
    customer_id: str,
    capabilities: CapabilitySet
) -> RiskFactorResult:
    """base 0.1, +0.3 unknown network, +0.1 2g-class link, +0.2 hotspot pattern"""
    if network is None:
        return RiskFactorResult(score=NO_NETWORK_SCORE, reason="no network data provided")

    tracker = LookupTracker(capabilities)
    score = BASE_SCORE
    flags: List[str] = []

    is_known = bool(await tracker.call("is_known_network", network, customer_id, default=False))
    if not is_known:
        score += 0.3
        flags.append('unknown_network')

    if network.effective_type in ('slow-2g', '2g'):
        score += 0.1
        flags.append('slow_connection')

    if is_mobile_hotspot(network):
        score += 0.2
        flags.append('mobile_hotspot')

    details = {
        'isKnownNetwork': is_known,
        'flags': flags,
        'effectiveType': network.effective_type,
    }
    reason = f"network flags: {', '.join(flags)}" if flags else "network appears normal"
    return _result(score, reason, details, tracker)

# ---------------------------------------------------------------------------
# timing
# ---------------------------------------------------------------------------

def local_hour(timestamp: datetime, timezone_name: Optional[str] = None) -> int:
    """
    wall-clock hour of the transaction

    aware timestamps are shifted into the device's timezone when it names a
    known IANA zone, everything else keeps its own hour
    """
    if timestamp.tzinfo is not None and timezone_name:
        try:
            return timestamp.astimezone(ZoneInfo(timezone_name)).hour
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("unknown device timezone %r, using timestamp hour", timezone_name)
    return timestamp.hour

def _as_count(value: Any) -> int:
    # history providers may hand back the transactions themselves
    if isinstance(value, (list, tuple)):
        return len(value)
    return int(value or 0)

async def analyze_timing(
    context: TransactionContext,
    capabilities: CapabilitySet
) -> RiskFactorResult:
    """
    base 0.1, +0.2 between 02:00 and 05:59, +0.3 more than 5 transactions in the
    hour before this one
    """
    tracker = LookupTracker(capabilities)
    timestamp = context.timestamp or datetime.now()
    timezone_name = context.device_fingerprint.timezone if context.device_fingerprint else None

    score = BASE_SCORE
    flags: List[str] = []

    hour = local_hour(timestamp, timezone_name)
    if 2 <= hour <= 5:
        score += 0.2
        flags.append('unusual_time')

    recent = await tracker.call(
        "recent_transaction_count", context.customer_id, settings.recent_window_hours, timestamp,
        default=0
    )
    try:
        recent_count = _as_count(recent)
    except (TypeError, ValueError):
        logger.warning("capability recent_transaction_count returned %r", recent)
        tracker.failed.append("recent_transaction_count")
        recent_count = 0

    if recent_count > settings.rapid_transaction_count:
        score += 0.3
        flags.append('rapid_transactions')

    details = {
        'hour': hour,
        'recentTransactionCount': recent_count,
        'flags': flags,
    }
    reason = f"timing flags: {', '.join(flags)}" if flags else "timing appears normal"
    return _result(score, reason, details, tracker)

# ---------------------------------------------------------------------------
# amount
# ---------------------------------------------------------------------------

def _amount_of(entry: Any) -> Optional[float]:
    if isinstance(entry, dict):
        entry = entry.get('amount')
    else:
        entry = getattr(entry, 'amount', entry)
    try:
        return float(entry)
    except (TypeError, ValueError):
        return None

def _past_amounts(history: Any) -> List[float]:
    """numeric amounts of a spending history, TypeError when it is not a sequence"""
    if history is None:
        return []
    if isinstance(history, (str, bytes, dict)):
        raise TypeError(f"expected a sequence of amounts, got {type(history).__name__}")
    return [a for a in (_amount_of(entry) for entry in history) if a is not None]

def is_round_amount(amount: float) -> bool:
    return amount > 1000 and amount % 100 == 0

async def analyze_amount(
    amount: float,
    customer_id: str,
    merchant_id: str,
    capabilities: CapabilitySet
) -> RiskFactorResult:
    """
    compare the amount with the customer's and the merchant's usual amounts

    base 0.1, +0.4 over 5x customer average, +0.1 round amount over 1000,
    +0.2 over 3x merchant average
    """
    tracker = LookupTracker(capabilities)
    score = BASE_SCORE
    flags: List[str] = []

    history = await tracker.call("spending_history", customer_id, default=[])
    try:
        past_amounts = _past_amounts(history)
    except TypeError:
        logger.warning("capability spending_history returned %r", history)
        tracker.failed.append("spending_history")
        past_amounts = []
    customer_avg = float(np.mean(past_amounts)) if past_amounts else 0.0

    if customer_avg > 0 and amount > customer_avg * 5:
        score += 0.4
        flags.append('unusually_large_amount')

    if is_round_amount(amount):
        score += 0.1
        flags.append('round_number')

    stats = _coerce(
        MerchantStats,
        await tracker.call("merchant_stats", merchant_id, default=None),
        tracker, "merchant_stats"
    )
    merchant_avg = stats.avg_amount if stats is not None else 0.0
    if merchant_avg > 0 and amount > merchant_avg * 3:
        score += 0.2
        flags.append('above_merchant_average')

    details = {
        'amount': amount,
        'customerAvgAmount': customer_avg,
        'merchantAvgAmount': merchant_avg,
        'flags': flags,
    }
    reason = f"amount flags: {', '.join(flags)}" if flags else "amount appears normal"
    return _result(score, reason, details, tracker)
