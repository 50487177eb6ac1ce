# unit tests for request/response models

import pytest
from pydantic import ValidationError

from conftest import FIXED_TIME, make_context
from service.schemas import (
    LastLocation,
    MerchantStats,
    RiskFactorResult,
    TransactionContext,
)

def test_context_accepts_camel_case():
    context = TransactionContext.model_validate(make_context(
        deviceFingerprint={'userAgent': "Mozilla/5.0", 'screenResolution': "1920x1080"},
        behaviorData={'mouseMovements': 12, 'actionsPerMinute': 30},
    ))
    assert context.device_fingerprint.user_agent == "Mozilla/5.0"
    assert context.behavior_data.mouse_movements == 12
    assert context.behavior_data.clicks == 0

def test_context_dumps_camel_case():
    context = TransactionContext.model_validate(make_context(forcedRiskScore=0.4))
    dumped = context.model_dump(by_alias=True, exclude_none=True)
    assert dumped['customerId'] == "cust_1"
    assert dumped['forcedRiskScore'] == 0.4

def test_currency_is_normalized():
    assert TransactionContext.model_validate(make_context(currency="gbp")).currency == "GBP"

def test_currency_defaults_to_usd():
    body = make_context()
    del body['currency']
    assert TransactionContext.model_validate(body).currency == "USD"

def test_context_is_immutable():
    context = TransactionContext.model_validate(make_context())
    with pytest.raises(ValidationError):
        context.amount = 1

def test_unknown_effective_type_is_rejected():
    with pytest.raises(ValidationError):
        TransactionContext.model_validate(make_context(networkData={'effectiveType': '5g'}))

def test_negative_behavior_counts_are_rejected():
    with pytest.raises(ValidationError):
        TransactionContext.model_validate(make_context(behaviorData={'clicks': -1}))

@pytest.mark.parametrize("payload", [
    {'latitude': 1.5, 'longitude': 2.5, 'timestamp': FIXED_TIME},
    {'lat': 1.5, 'lon': 2.5, 'timestamp': FIXED_TIME},
    {'lat': 1.5, 'lng': 2.5, 'timestamp': FIXED_TIME},
])
def test_last_location_coordinate_names(payload):
    last = LastLocation.model_validate(payload)
    assert (last.latitude, last.longitude) == (1.5, 2.5)

def test_merchant_stats_accepts_both_spellings():
    assert MerchantStats.model_validate({'avgAmount': 12.5}).avg_amount == 12.5
    assert MerchantStats.model_validate({'avg_amount': 12.5, 'transaction_count': 3}).transaction_count == 3

def test_factor_score_is_bounded():
    with pytest.raises(ValidationError):
        RiskFactorResult(score=1.2, reason="too much")

def test_factor_flags():
    factor = RiskFactorResult(score=0.5, reason="x", details={'flags': ['unknown_device']})
    assert factor.flags == ['unknown_device']
    assert RiskFactorResult(score=0.1, reason="y").flags == []
