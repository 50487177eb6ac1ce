# aggregation + decision rules
# combines factor scores into one risk score, buckets it into a level and
# derives recommendations and flags

import math
from typing import Dict, List, Mapping, Optional

from service.config import settings
from service.schemas import Recommendation, RiskFactorResult, RiskLevel

# canned factors for the forced-score path: (score, reason) per factor
SCENARIO_FACTORS: Dict[str, Dict[str, tuple]] = {
    'suspicious': {
        'location': (0.3, "suspicious location detected"),
        'device': (0.2, "device appears normal"),
        'behavior': (0.4, "suspicious behavior patterns"),
        'network': (0.1, "network appears normal"),
        'timing': (0.2, "unusual transaction timing"),
        'amount': (0.3, "above average transaction amount"),
    },
    'fraudulent': {
        'location': (0.5, "high-risk location detected"),
        'device': (0.4, "suspicious device characteristics"),
        'behavior': (0.6, "automated behavior detected"),
        'network': (0.3, "suspicious network patterns"),
        'timing': (0.4, "highly unusual transaction timing"),
        'amount': (0.5, "extremely high transaction amount"),
    },
}

def _usable_score(factor) -> Optional[float]:
    """factor score as float, None when absent or not a finite number"""
    score = getattr(factor, 'score', None)
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    if not math.isfinite(score):
        return None
    return float(score)

def calculate_risk_score(
    risk_factors: Mapping[str, RiskFactorResult],
    weights: Optional[Mapping[str, float]] = None
) -> float:
    """
    weighted average of the factors that are present, plus the
    multi-factor boost

    args:
        risk_factors: factor name -> result (any subset of the six)
        weights: factor name -> weight (default: settings.factor_weights)

    returns:
        score in [0, 1]; neutral_score when no factor is usable
    """
    if weights is None:
        weights = settings.factor_weights

    total_score = 0.0
    total_weight = 0.0
    for name, weight in weights.items():
        score = _usable_score(risk_factors.get(name))
        if score is None:
            continue
        total_score += score * weight
        total_weight += weight

    if total_weight <= 0:
        return settings.neutral_score

    aggregated = total_score / total_weight

    # several independent strong signals escalate more than one alone
    high_factors = sum(
        1 for factor in risk_factors.values()
        if (_usable_score(factor) or 0.0) > settings.high_factor_threshold
    )
    if high_factors >= 2:
        aggregated += settings.multi_factor_boost

    return round(max(0.0, min(aggregated, 1.0)), 4)

def get_risk_level(score: float) -> RiskLevel:
    """LOW below 0.4, MEDIUM below 0.7, HIGH otherwise"""
    if score < settings.medium_risk_threshold:
        return RiskLevel.LOW
    if score < settings.high_risk_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH

def get_recommendations(score: float, risk_factors: Mapping[str, RiskFactorResult]) -> List[Recommendation]:
    """
    one score bucket (highest matching threshold) followed by
    factor-specific verifications
    """
    recommendations: List[Recommendation] = []

    if score > settings.block_threshold:
        recommendations += [Recommendation.BLOCK_TRANSACTION, Recommendation.REQUIRE_MANUAL_REVIEW]
    elif score > settings.two_factor_threshold:
        recommendations += [Recommendation.REQUIRE_2FA, Recommendation.SEND_SMS_VERIFICATION]
    elif score > settings.email_verification_threshold:
        recommendations.append(Recommendation.REQUIRE_EMAIL_VERIFICATION)

    device_score = _usable_score(risk_factors.get('device'))
    if device_score is not None and device_score > settings.high_factor_threshold:
        recommendations.append(Recommendation.VERIFY_DEVICE)

    location_score = _usable_score(risk_factors.get('location'))
    if location_score is not None and location_score > settings.high_factor_threshold:
        recommendations.append(Recommendation.VERIFY_LOCATION)

    return recommendations

def collect_flags(risk_factors: Mapping[str, RiskFactorResult]) -> List[str]:
    """union of every factor's details.flags, first occurrence wins the order"""
    seen: Dict[str, None] = {}
    for factor in risk_factors.values():
        details = getattr(factor, 'details', None) or {}
        for flag in details.get('flags', []) or []:
            seen.setdefault(flag, None)
    return list(seen)

def scenario_factors(scenario: Optional[str]) -> Dict[str, RiskFactorResult]:
    """canned factors for the forced-score path ({} for normal / no scenario)"""
    table = SCENARIO_FACTORS.get(scenario or 'normal', {})
    return {
        name: RiskFactorResult(score=score, reason=reason)
        for name, (score, reason) in table.items()
    }
