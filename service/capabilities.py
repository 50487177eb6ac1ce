# pluggable lookups the engine depends on but does not implement
# (geocoding, reputation, history). every capability may be a plain function
# or a coroutine function; failures and timeouts fall back to a default

import asyncio
import inspect
import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, List, Optional, Tuple

from service import geo
from service.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# reference providers (deterministic, no history)
# ---------------------------------------------------------------------------

def resolve_nearest_city(latitude: float, longitude: float) -> dict:
    return geo.nearest_location(latitude, longitude)

def no_vpn_detected(location_data) -> bool:
    return False

def no_last_location(customer_id: str):
    return None

def device_never_seen(fingerprint, customer_id: str) -> bool:
    return False

def network_never_seen(network_data, customer_id: str) -> bool:
    return False

def no_recent_transactions(customer_id: str, hours: int, as_of=None) -> int:
    return 0

def no_spending_history(customer_id: str) -> list:
    return []

def no_merchant_stats(merchant_id: str):
    return None

@dataclass(frozen=True)
class CapabilitySet:
    """
    bundle of lookups handed to the engine

    defaults are side-effect free stand-ins: nearest-city geocoding, the
    flagged-country radius check, and an empty history (every device and
    network is unknown, no previous locations or amounts)
    """
    resolve_location: Callable = resolve_nearest_city
    is_high_risk_country: Callable = geo.is_high_risk_country
    detect_vpn: Callable = no_vpn_detected
    last_known_location: Callable = no_last_location
    is_known_device: Callable = device_never_seen
    is_known_network: Callable = network_never_seen
    recent_transaction_count: Callable = no_recent_transactions
    spending_history: Callable = no_spending_history
    merchant_stats: Callable = no_merchant_stats

    def with_overrides(self, **overrides) -> "CapabilitySet":
        """copy with some capabilities swapped (unknown names raise TypeError)"""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"unknown capabilities: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)

class LookupTracker:
    """
    calls capabilities for one factor and remembers which ones failed

    usage:
        tracker = LookupTracker(caps)
        known = await tracker.call("is_known_device", fp, customer_id, default=False)
        tracker.failed  # ["is_known_device"] if it raised or timed out
    """

    def __init__(self, capabilities: CapabilitySet, timeout: Optional[float] = None):
        self.capabilities = capabilities
        self.timeout = timeout if timeout is not None else settings.capability_timeout_seconds
        self.failed: List[str] = []

    async def call(self, name: str, *args, default: Any = None) -> Any:
        value, ok = await call_capability(
            name, getattr(self.capabilities, name), *args,
            default=default, timeout=self.timeout
        )
        if not ok:
            self.failed.append(name)
        return value

async def call_capability(
    name: str,
    func: Callable,
    *args,
    default: Any = None,
    timeout: Optional[float] = None
) -> Tuple[Any, bool]:
    """
    run one capability and never raise

    args:
        name: capability name (for logs)
        func: sync or async callable
        default: value returned when the call fails or times out
        timeout: seconds to wait for an async result (None = wait forever)

    returns:
        (value, ok) - ok is False when the default was substituted
    """
    try:
        result = func(*args)
        if inspect.isawaitable(result):
            if timeout is not None:
                result = await asyncio.wait_for(result, timeout)
            else:
                result = await result
        return result, True
    except asyncio.TimeoutError:
        logger.warning("capability %s timed out after %ss, using default", name, timeout)
    except Exception as e:
        logger.warning("capability %s failed (%s: %s), using default", name, type(e).__name__, e)
    return default, False
