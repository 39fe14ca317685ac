"""
otpshield/simulation.py
Stand-ins for signals the engine cannot observe on a demo device.

LocationProvider is the seam: the risk engine calls locate() and reads
is_unusual. A real geolocation anomaly check subclasses LocationProvider
and implements locate(). The engine never knows which provider is running.
"""

import random
from abc import ABC, abstractmethod
from typing import List, Optional

from otpshield.models.record import Location

CITIES: List[Location] = [
    Location(name='New York',       lat=40.7128,  lng=-74.0060),
    Location(name='London',         lat=51.5074,  lng=-0.1278),
    Location(name='Tokyo',          lat=35.6762,  lng=139.6503),
    Location(name='Mumbai',         lat=19.0760,  lng=72.8777),
    Location(name='Sydney',         lat=-33.8688, lng=151.2093),
    Location(name='Rio de Janeiro', lat=-22.9068, lng=-43.1729),
]

# Sender IDs used when a message carries no header and the caller gave none
FAKE_SENDERS: List[str] = [
    'FAKEBANK', 'BANKOFIN', 'HDFCBK1', 'ICICI-BNK',
    'SBIBNK2', 'SCAMBANK', 'ALERTS', 'VERIFY',
    'BANKING', 'SECURE', 'AMZN', 'NFLX',
    'UBERR', 'DELIVERY',
]


class LocationProvider(ABC):

    @abstractmethod
    def locate(self) -> Location:
        """Location of the device for the current request."""
        ...


class RandomLocationProvider(LocationProvider):
    """
    Picks one of six cities, jitters lat/lng by up to ±0.1 and flags the
    result unusual with fixed probability (default 30%).
    """

    def __init__(
        self,
        unusual_probability: float = 0.3,
        rng: Optional[random.Random] = None,
    ):
        self.unusual_probability = unusual_probability
        self.rng = rng or random.Random()

    def locate(self) -> Location:
        city = self.rng.choice(CITIES)
        return Location(
            name       = city.name,
            lat        = city.lat + (self.rng.random() - 0.5) * 0.2,
            lng        = city.lng + (self.rng.random() - 0.5) * 0.2,
            is_unusual = self.rng.random() < self.unusual_probability,
        )


class StaticLocationProvider(LocationProvider):
    """Always reports the same location."""

    def __init__(self, location: Optional[Location] = None):
        self.location = location or Location(
            name=CITIES[0].name, lat=CITIES[0].lat, lng=CITIES[0].lng,
        )

    def locate(self) -> Location:
        return Location(
            name       = self.location.name,
            lat        = self.location.lat,
            lng        = self.location.lng,
            is_unusual = self.location.is_unusual,
        )


def generate_random_location(rng: Optional[random.Random] = None) -> Location:
    return RandomLocationProvider(rng=rng).locate()


def random_sender_id(
    trusted_senders: List[str],
    rng: Optional[random.Random] = None,
) -> str:
    """70% a trusted sender, 30% a lookalike."""
    rng = rng or random
    if trusted_senders and rng.random() > 0.3:
        return rng.choice(trusted_senders)
    return rng.choice(FAKE_SENDERS)
