# shared fixtures - deterministic contexts and capability doubles
# nothing here depends on randomness or the wall-clock hour

from datetime import datetime

import pytest

from service.capabilities import CapabilitySet
from service.engine import RiskEngine

# weekday afternoon, outside the 02:00-05:59 window
FIXED_TIME = datetime(2025, 6, 10, 14, 30)

NEW_YORK = {"latitude": 40.7128, "longitude": -74.0060}
LONDON = {"latitude": 51.5074, "longitude": -0.1278}
MOSCOW = {"latitude": 55.7558, "longitude": 37.6176}

NORMAL_FINGERPRINT = {
    "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36",
    "screenResolution": "1920x1080",
    "timezone": "America/New_York",
    "language": "en-US",
    "platform": "Win32",
    "webglVendor": "Google Inc. (NVIDIA)",
    "canvasFingerprint": "c4nv45",
    "webdriver": False,
}

HEADLESS_FINGERPRINT = {
    "userAgent": "Mozilla/5.0 (X11; Linux x86_64) HeadlessChrome/120.0.0.0 Safari/537.36",
    "screenResolution": "800x600",
    "timezone": "UTC",
    "language": "en-US",
    "platform": "Linux x86_64",
    "webdriver": True,
}

NORMAL_BEHAVIOR = {
    "clicks": 15,
    "keystrokes": 50,
    "scrolls": 8,
    "mouseMovements": 200,
    "sessionDuration": 300000,
    "actionsPerMinute": 20,
}

BOT_BEHAVIOR = {
    "clicks": 0,
    "keystrokes": 0,
    "scrolls": 0,
    "mouseMovements": 0,
    "sessionDuration": 5000,
    "actionsPerMinute": 0,
}

def make_context(**overrides) -> dict:
    """json-shaped transaction context with sensible defaults"""
    context = {
        "amount": 99.99,
        "currency": "USD",
        "customerId": "cust_1",
        "merchantId": "merch_1",
        "timestamp": FIXED_TIME,
    }
    context.update(overrides)
    return context

def known_everything() -> CapabilitySet:
    """capabilities where the device and network are already known"""
    return CapabilitySet(
        is_known_device=lambda fingerprint, customer_id: True,
        is_known_network=lambda network, customer_id: True,
    )

def failing(*args):
    raise RuntimeError("lookup backend down")

@pytest.fixture
def engine():
    return RiskEngine()

@pytest.fixture
def known_caps():
    return known_everything()
