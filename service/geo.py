"""
Geographic helpers for the location factor
Distance math, flagged-country centroids and the reference city table used
to resolve coordinates when no real geocoder is plugged in
"""

import math
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from service.config import settings

# centroids of flagged countries - a point within high_risk_radius_km of one
# of these is treated as inside that country
HIGH_RISK_CENTROIDS: List[Dict] = [
    {'lat': 35.8617, 'lon': 104.1954, 'countryCode': 'CN'},
    {'lat': 55.7558, 'lon': 37.6176, 'countryCode': 'RU'},
    {'lat': 20.5937, 'lon': 78.9629, 'countryCode': 'IN'},
]

REFERENCE_LOCATIONS: List[Dict] = [
    {'lat': 40.7128, 'lon': -74.0060, 'city': 'New York', 'country': 'United States', 'countryCode': 'US'},
    {'lat': 34.0522, 'lon': -118.2437, 'city': 'Los Angeles', 'country': 'United States', 'countryCode': 'US'},
    {'lat': 51.5074, 'lon': -0.1278, 'city': 'London', 'country': 'United Kingdom', 'countryCode': 'GB'},
    {'lat': 48.8566, 'lon': 2.3522, 'city': 'Paris', 'country': 'France', 'countryCode': 'FR'},
    {'lat': 35.6762, 'lon': 139.6503, 'city': 'Tokyo', 'country': 'Japan', 'countryCode': 'JP'},
    {'lat': 55.7558, 'lon': 37.6176, 'city': 'Moscow', 'country': 'Russia', 'countryCode': 'RU'},
    {'lat': 39.9042, 'lon': 116.4074, 'city': 'Beijing', 'country': 'China', 'countryCode': 'CN'},
    {'lat': 19.4326, 'lon': -99.1332, 'city': 'Mexico City', 'country': 'Mexico', 'countryCode': 'MX'},
    {'lat': -33.8688, 'lon': 151.2093, 'city': 'Sydney', 'country': 'Australia', 'countryCode': 'AU'},
    {'lat': 43.6532, 'lon': -79.3832, 'city': 'Toronto', 'country': 'Canada', 'countryCode': 'CA'},
]

# extra cities the demo resolver swaps in for variety
DEMO_SUBSTITUTIONS: List[Dict] = [
    {'city': 'San Francisco', 'country': 'United States', 'countryCode': 'US'},
    {'city': 'Chicago', 'country': 'United States', 'countryCode': 'US'},
    {'city': 'Miami', 'country': 'United States', 'countryCode': 'US'},
    {'city': 'Berlin', 'country': 'Germany', 'countryCode': 'DE'},
    {'city': 'Madrid', 'country': 'Spain', 'countryCode': 'ES'},
    {'city': 'Rome', 'country': 'Italy', 'countryCode': 'IT'},
    {'city': 'Amsterdam', 'country': 'Netherlands', 'countryCode': 'NL'},
    {'city': 'Stockholm', 'country': 'Sweden', 'countryCode': 'SE'},
]

EARTH_RADIUS_KM = 6371.0

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points on Earth in kilometers
    Uses Haversine formula
    """
    lat1, lon1, lat2, lon2 = float(lat1), float(lon1), float(lat2), float(lon2)

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = math.sin(delta_lat/2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c

def is_high_risk_country(latitude: float, longitude: float, radius_km: Optional[float] = None) -> bool:
    """True when the point is within radius_km of a flagged country centroid"""
    if radius_km is None:
        radius_km = settings.high_risk_radius_km
    return any(
        haversine_distance(latitude, longitude, c['lat'], c['lon']) < radius_km
        for c in HIGH_RISK_CENTROIDS
    )

def nearest_location(latitude: float, longitude: float) -> Dict:
    """closest entry of the reference table as {city, country, countryCode}"""
    closest = min(
        REFERENCE_LOCATIONS,
        key=lambda loc: haversine_distance(latitude, longitude, loc['lat'], loc['lon'])
    )
    return {
        'city': closest['city'],
        'country': closest['country'],
        'countryCode': closest['countryCode'],
    }

def make_demo_resolver(substitution_rate: float = 0.2, rng: Optional[random.Random] = None) -> Callable:
    """
    resolver that sometimes returns a random city instead of the nearest one
    only for demos - never wire this into a real deployment

    args:
        substitution_rate: probability of returning a random city
        rng: random source (pass a seeded Random for reproducible demos)
    """
    rng = rng or random.Random()

    def resolve(latitude: float, longitude: float) -> Dict:
        if rng.random() < substitution_rate:
            return dict(rng.choice(DEMO_SUBSTITUTIONS))
        return nearest_location(latitude, longitude)

    return resolve

def implied_speed_kmh(
    lat1: float, lon1: float, time1: datetime,
    lat2: float, lon2: float, time2: datetime
) -> float:
    """
    speed needed to travel between two fixes

    fixes at the same instant with any distance give infinity,
    zero distance is always 0
    """
    distance = haversine_distance(lat1, lon1, lat2, lon2)
    if distance == 0:
        return 0.0

    # .timestamp() handles naive (local) and aware datetimes alike
    hours = abs(time2.timestamp() - time1.timestamp()) / 3600
    if hours == 0:
        return math.inf
    return distance / hours
