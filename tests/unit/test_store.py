# unit tests for the in-memory history store and store-backed capabilities

from datetime import timedelta

import pytest

from conftest import FIXED_TIME, LONDON, NEW_YORK, NORMAL_BEHAVIOR, NORMAL_FINGERPRINT, make_context
from service.schemas import DeviceFingerprint, NetworkData, TransactionContext
from service.store import (
    InMemoryHistoryStore,
    fingerprint_hash,
    network_signature,
    store_capabilities,
)

def context(**overrides):
    return TransactionContext.model_validate(make_context(**{
        'locationData': NEW_YORK,
        'deviceFingerprint': NORMAL_FINGERPRINT,
        'behaviorData': NORMAL_BEHAVIOR,
        'networkData': {'effectiveType': '4g', 'downlink': 10},
        **overrides,
    }))

@pytest.fixture
def store():
    return InMemoryHistoryStore()

async def analyze_and_record(engine, store, ctx):
    analysis = await engine.analyze(ctx, store_capabilities(store))
    await store.record(analysis, ctx)
    return analysis

# --- identity helpers ---

def test_fingerprint_hash_is_stable():
    a = DeviceFingerprint.model_validate(NORMAL_FINGERPRINT)
    b = DeviceFingerprint.model_validate(NORMAL_FINGERPRINT)
    assert fingerprint_hash(a) == fingerprint_hash(b)
    assert len(fingerprint_hash(a)) == 64

def test_fingerprint_hash_ignores_volatile_fields():
    base = DeviceFingerprint.model_validate(NORMAL_FINGERPRINT)
    assert fingerprint_hash(base) == fingerprint_hash(base.model_copy(update={'plugins': ['pdf']}))
    assert fingerprint_hash(base) != fingerprint_hash(base.model_copy(update={'platform': 'MacIntel'}))

def test_missing_identity():
    assert fingerprint_hash(None) is None
    assert network_signature(None) is None
    assert network_signature(NetworkData(downlink=5)) is None
    assert network_signature(NetworkData(effective_type='4g')) == "4g|False"

# --- lookups ---

async def test_empty_store(store):
    ctx = context()
    assert await store.last_known_location("cust_1") is None
    assert await store.is_known_device(ctx.device_fingerprint, "cust_1") is False
    assert await store.is_known_network(ctx.network_data, "cust_1") is False
    assert await store.recent_transaction_count("cust_1", 1, as_of=FIXED_TIME) == 0
    assert await store.spending_history("cust_1") == []
    assert await store.merchant_stats("merch_1") is None
    assert await store.list_analyses() == []

async def test_recorded_transaction_feeds_lookups(engine, store):
    ctx = context()
    analysis = await analyze_and_record(engine, store, ctx)

    assert await store.get_analysis(analysis.transaction_id) == analysis
    assert await store.list_analyses() == [analysis]
    assert await store.is_known_device(ctx.device_fingerprint, "cust_1") is True
    assert await store.is_known_network(ctx.network_data, "cust_1") is True
    assert await store.spending_history("cust_1") == [99.99]

    last = await store.last_known_location("cust_1")
    assert (last.latitude, last.longitude) == (NEW_YORK['latitude'], NEW_YORK['longitude'])
    assert last.timestamp == FIXED_TIME

    stats = await store.merchant_stats("merch_1")
    assert stats.avg_amount == pytest.approx(99.99)
    assert stats.transaction_count == 1

async def test_history_is_per_customer(engine, store):
    ctx = context()
    await analyze_and_record(engine, store, ctx)

    assert await store.is_known_device(ctx.device_fingerprint, "someone_else") is False
    assert await store.spending_history("someone_else") == []

async def test_recent_count_window(engine, store):
    await analyze_and_record(engine, store, context())
    await analyze_and_record(engine, store, context(timestamp=FIXED_TIME - timedelta(hours=3)))

    assert await store.recent_transaction_count("cust_1", 1, as_of=FIXED_TIME + timedelta(minutes=30)) == 1
    assert await store.recent_transaction_count("cust_1", 4, as_of=FIXED_TIME) == 2
    assert await store.recent_transaction_count("cust_1", 1, as_of=FIXED_TIME + timedelta(hours=2)) == 0

async def test_last_location_is_most_recent_fix(engine, store):
    await analyze_and_record(engine, store, context())
    await analyze_and_record(engine, store, context(
        locationData={**LONDON, 'timestamp': FIXED_TIME - timedelta(days=2)}
    ))

    last = await store.last_known_location("cust_1")
    assert last.latitude == NEW_YORK['latitude']

async def test_merchant_average(engine, store):
    await analyze_and_record(engine, store, context(amount=100))
    await analyze_and_record(engine, store, context(amount=300, customerId="cust_2"))

    stats = await store.merchant_stats("merch_1")
    assert stats.avg_amount == pytest.approx(200)
    assert stats.transaction_count == 2

async def test_clear(engine, store):
    await analyze_and_record(engine, store, context())
    store.clear()
    assert await store.list_analyses() == []
    assert await store.spending_history("cust_1") == []

async def test_oldest_analyses_are_dropped(engine):
    store = InMemoryHistoryStore(max_analyses=2)
    first = await analyze_and_record(engine, store, context())
    second = await analyze_and_record(engine, store, context())
    third = await analyze_and_record(engine, store, context())

    assert await store.get_analysis(first.transaction_id) is None
    assert [a.transaction_id for a in await store.list_analyses()] == [
        second.transaction_id, third.transaction_id
    ]

async def test_customer_history_is_capped(engine):
    store = InMemoryHistoryStore(max_events_per_customer=2)
    for amount in (10, 20, 30):
        await analyze_and_record(engine, store, context(amount=amount))

    assert await store.spending_history("cust_1") == [20, 30]
    # merchant averages still cover every recorded transaction
    stats = await store.merchant_stats("merch_1")
    assert stats.avg_amount == pytest.approx(20)
    assert stats.transaction_count == 3

async def test_least_recent_customer_is_dropped(engine):
    store = InMemoryHistoryStore(max_customers=2)
    for customer in ("cust_a", "cust_b", "cust_a", "cust_c"):
        await analyze_and_record(engine, store, context(customerId=customer))

    assert await store.spending_history("cust_b") == []
    assert len(await store.spending_history("cust_a")) == 2
    assert len(await store.spending_history("cust_c")) == 1

# --- store-backed scoring ---

async def test_returning_customer_scores_lower(engine, store):
    first = await analyze_and_record(engine, store, context())
    second = await analyze_and_record(engine, store, context())

    assert 'unknown_device' in first.flags
    assert 'unknown_network' in first.flags
    assert second.flags == []
    assert second.risk_score < first.risk_score
    assert second.risk_factors['device'].details['isKnownDevice'] is True

async def test_spike_against_history(engine, store):
    await analyze_and_record(engine, store, context(amount=100))
    spike = await analyze_and_record(engine, store, context(amount=1000))

    amount = spike.risk_factors['amount']
    assert amount.details['customerAvgAmount'] == pytest.approx(100)
    assert amount.flags == ['unusually_large_amount', 'above_merchant_average']
    assert amount.score == pytest.approx(0.7)

async def test_travel_between_recorded_fixes(engine, store):
    await analyze_and_record(engine, store, context(
        locationData={**LONDON, 'timestamp': FIXED_TIME - timedelta(hours=1)}
    ))
    hop = await analyze_and_record(engine, store, context())

    assert hop.risk_factors['location'].details['isVelocityAnomaly'] is True

async def test_rapid_transactions_use_transaction_time(engine, store):
    for minute in range(6):
        await analyze_and_record(engine, store, context(timestamp=FIXED_TIME + timedelta(minutes=minute)))

    seventh = await analyze_and_record(engine, store, context(timestamp=FIXED_TIME + timedelta(minutes=10)))

    timing = seventh.risk_factors['timing']
    assert timing.details['recentTransactionCount'] == 6
    assert timing.flags == ['rapid_transactions']

async def test_later_transactions_are_not_recent(engine, store):
    for minute in range(6):
        await analyze_and_record(engine, store, context(timestamp=FIXED_TIME + timedelta(hours=2, minutes=minute)))

    earlier = await analyze_and_record(engine, store, context())

    assert earlier.risk_factors['timing'].details['recentTransactionCount'] == 0
    assert 'rapid_transactions' not in earlier.flags
