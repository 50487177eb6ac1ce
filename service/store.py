"""
History store - where callers keep analyses and the per-customer signals
that later transactions are compared against

The engine never touches a store directly. Callers record each analysis
after it is produced and hand the engine a CapabilitySet built with
store_capabilities(store), so "known device", "recent transactions",
"spending history" etc. all come from the same place.
"""

import hashlib
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Tuple

from service.capabilities import CapabilitySet
from service.config import settings
from service.schemas import (
    DeviceFingerprint,
    LastLocation,
    MerchantStats,
    NetworkData,
    RiskAnalysis,
    TransactionContext,
)

# fingerprint fields that identify a browser install
FINGERPRINT_FIELDS = (
    'user_agent', 'screen_resolution', 'timezone', 'language', 'platform',
    'webgl_vendor', 'webgl_renderer', 'canvas_fingerprint',
)

def fingerprint_hash(fingerprint: Optional[DeviceFingerprint]) -> Optional[str]:
    """stable sha256 of the identifying fingerprint fields"""
    if fingerprint is None:
        return None
    raw = "|".join(str(getattr(fingerprint, name) or "") for name in FINGERPRINT_FIELDS)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()

def network_signature(network: Optional[NetworkData]) -> Optional[str]:
    if network is None or network.effective_type is None:
        return None
    return f"{network.effective_type}|{bool(network.save_data)}"

class HistoryStore:
    """interface shared by the in-memory and sql stores"""

    async def record(self, analysis: RiskAnalysis, context: TransactionContext):
        raise NotImplementedError

    async def get_analysis(self, transaction_id: str) -> Optional[RiskAnalysis]:
        raise NotImplementedError

    async def list_analyses(self) -> List[RiskAnalysis]:
        raise NotImplementedError

    async def last_known_location(self, customer_id: str) -> Optional[LastLocation]:
        raise NotImplementedError

    async def is_known_device(self, fingerprint: DeviceFingerprint, customer_id: str) -> bool:
        raise NotImplementedError

    async def is_known_network(self, network: NetworkData, customer_id: str) -> bool:
        raise NotImplementedError

    async def recent_transaction_count(
        self, customer_id: str, hours: int, as_of: Optional[datetime] = None
    ) -> int:
        """transactions in the `hours` before as_of (default: now), as_of included"""
        raise NotImplementedError

    async def spending_history(self, customer_id: str) -> List[float]:
        raise NotImplementedError

    async def merchant_stats(self, merchant_id: str) -> Optional[MerchantStats]:
        raise NotImplementedError

@dataclass
class _Event:
    """one recorded transaction, reduced to what the lookups need"""
    transaction_id: str
    merchant_id: str
    amount: float
    timestamp: datetime
    device_hash: Optional[str]
    network_sig: Optional[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_time: Optional[datetime] = None

class InMemoryHistoryStore(HistoryStore):
    """
    process-wide store for demos and tests
    lock-protected so it can be shared by concurrent requests

    memory is bounded: the oldest analyses, the oldest events of a customer
    and the least recently active customers are dropped past their caps.
    merchant averages are running totals and cover every recorded row
    """

    def __init__(
        self,
        max_analyses: Optional[int] = None,
        max_customers: Optional[int] = None,
        max_events_per_customer: Optional[int] = None
    ):
        """
        args:
            max_analyses: analyses kept for lookup by id
            max_customers: customers whose history is kept
            max_events_per_customer: history entries kept per customer
            (each defaults to its memory_store_* setting)
        """
        self.max_analyses = max_analyses or settings.memory_store_max_analyses
        self.max_customers = max_customers or settings.memory_store_max_customers
        self.max_events_per_customer = (
            max_events_per_customer or settings.memory_store_max_events_per_customer
        )

        self._lock = threading.Lock()
        self._analyses: "OrderedDict[str, RiskAnalysis]" = OrderedDict()
        self._events: "OrderedDict[str, Deque[_Event]]" = OrderedDict()
        self._merchant_totals: Dict[str, Tuple[float, int]] = {}

    async def record(self, analysis: RiskAnalysis, context: TransactionContext):
        location = context.location_data
        event = _Event(
            transaction_id=analysis.transaction_id,
            merchant_id=analysis.merchant_id,
            amount=analysis.amount,
            timestamp=analysis.timestamp,
            device_hash=fingerprint_hash(context.device_fingerprint),
            network_sig=network_signature(context.network_data),
        )
        if location is not None:
            event.latitude = location.latitude
            event.longitude = location.longitude
            event.location_time = location.timestamp or analysis.timestamp

        with self._lock:
            self._analyses[analysis.transaction_id] = analysis
            self._analyses.move_to_end(analysis.transaction_id)
            while len(self._analyses) > self.max_analyses:
                self._analyses.popitem(last=False)

            events = self._events.get(analysis.customer_id)
            if events is None:
                events = self._events[analysis.customer_id] = deque(maxlen=self.max_events_per_customer)
            events.append(event)
            self._events.move_to_end(analysis.customer_id)
            while len(self._events) > self.max_customers:
                self._events.popitem(last=False)

            total, count = self._merchant_totals.get(analysis.merchant_id, (0.0, 0))
            self._merchant_totals[analysis.merchant_id] = (total + analysis.amount, count + 1)

    async def get_analysis(self, transaction_id: str) -> Optional[RiskAnalysis]:
        with self._lock:
            return self._analyses.get(transaction_id)

    async def list_analyses(self) -> List[RiskAnalysis]:
        with self._lock:
            return list(self._analyses.values())

    def _customer_events(self, customer_id: str) -> List[_Event]:
        with self._lock:
            return list(self._events.get(customer_id, []))

    async def last_known_location(self, customer_id: str) -> Optional[LastLocation]:
        located = [e for e in self._customer_events(customer_id) if e.latitude is not None]
        if not located:
            return None
        last = max(located, key=lambda e: e.location_time.timestamp())
        return LastLocation(latitude=last.latitude, longitude=last.longitude, timestamp=last.location_time)

    async def is_known_device(self, fingerprint: DeviceFingerprint, customer_id: str) -> bool:
        device = fingerprint_hash(fingerprint)
        return any(e.device_hash == device for e in self._customer_events(customer_id))

    async def is_known_network(self, network: NetworkData, customer_id: str) -> bool:
        signature = network_signature(network)
        if signature is None:
            return False
        return any(e.network_sig == signature for e in self._customer_events(customer_id))

    async def recent_transaction_count(
        self, customer_id: str, hours: int, as_of: Optional[datetime] = None
    ) -> int:
        as_of = as_of or datetime.now()
        end = as_of.timestamp()
        start = (as_of - timedelta(hours=hours)).timestamp()
        return sum(
            1 for e in self._customer_events(customer_id)
            if start <= e.timestamp.timestamp() <= end
        )

    async def spending_history(self, customer_id: str) -> List[float]:
        return [e.amount for e in self._customer_events(customer_id)]

    async def merchant_stats(self, merchant_id: str) -> Optional[MerchantStats]:
        with self._lock:
            total, count = self._merchant_totals.get(merchant_id, (0.0, 0))
        if not count:
            return None
        return MerchantStats(avg_amount=total / count, transaction_count=count)

    def clear(self):
        """drop everything (useful for testing)"""
        with self._lock:
            self._analyses.clear()
            self._events.clear()
            self._merchant_totals.clear()

def store_capabilities(store: HistoryStore, base: Optional[CapabilitySet] = None) -> CapabilitySet:
    """
    capability set whose history lookups read from store

    geocoding, country risk and vpn detection are taken from base
    """
    base = base or CapabilitySet()
    return base.with_overrides(
        last_known_location=store.last_known_location,
        is_known_device=store.is_known_device,
        is_known_network=store.is_known_network,
        recent_transaction_count=store.recent_transaction_count,
        spending_history=store.spending_history,
        merchant_stats=store.merchant_stats,
    )
