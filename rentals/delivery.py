# rentals/delivery.py
"""Home-delivery distance for the reservation checkout.

Coordinates reach us in whatever shape the agency record or the map widget
produced; everything is normalized to a `Coordinates(lng, lat)` pair first.
When the client opts into delivery, the straight-line (haversine) distance
is held as a provisional value and a fallback timer is started. A routed
distance arriving before the timer wins; otherwise the haversine value is
used. `DistanceLatch` makes sure exactly one of the two is committed.
"""
from __future__ import annotations

import json
import math
import threading
from collections.abc import Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, NamedTuple, Optional

from apscheduler.jobstores.base import JobLookupError

from .config import DEFAULT_COORDINATES, DELIVERY_FALLBACK_SECONDS
from .scheduler import start_scheduler
from .utils import logger

EARTH_RADIUS_KM = 6371.0
MAX_ROUTED_KM = 10000
HOME_DELIVERY = "home delivery"
AGENCY_PICKUP = "agency pickup"


class Coordinates(NamedTuple):
    lng: float
    lat: float


DEFAULT_POINT = Coordinates(*DEFAULT_COORDINATES)


def _number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _point(lng, lat) -> Optional[Coordinates]:
    lng, lat = _number(lng), _number(lat)
    if lng is None or lat is None or abs(lat) > 90 or abs(lng) > 180:
        return None
    return Coordinates(lng, lat)


def _from_pair(first, second) -> Optional[Coordinates]:
    # read as [lat, lng] unless the first value can't be a latitude
    a, b = _number(first), _number(second)
    if a is None or b is None:
        return None
    if abs(a) > 90:
        return _point(a, b)
    return _point(b, a)


def _pick(source, names):
    for name in names:
        if isinstance(source, Mapping):
            value = source.get(name)
        else:
            value = getattr(source, name, None)
        if value is not None:
            return value
    return None


def parse_coordinates(value) -> Optional[Coordinates]:
    """Read a point from JSON text, "lat,lng" text, a pair or a lat/lng object.

    Returns None when nothing usable is found.
    """
    if isinstance(value, Coordinates):
        return value
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("{", "[")):
            try:
                decoded = json.loads(text)
            except ValueError:
                decoded = None
            if decoded is not None:
                return parse_coordinates(decoded)
        parts = [p.strip() for p in text.replace("[", "").replace("]", "").split(",")]
        if len(parts) == 2:
            return _from_pair(*parts)
        return None
    if isinstance(value, (list, tuple)):
        return _from_pair(*value) if len(value) == 2 else None
    lat = _pick(value, ("lat", "latitude"))
    lng = _pick(value, ("lng", "lon", "longitude"))
    if lat is None or lng is None:
        return None
    return _point(lng, lat)


def normalize_coordinates(value) -> Coordinates:
    point = parse_coordinates(value)
    return point if point is not None else DEFAULT_POINT


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class LatchState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"


class DistanceLatch:
    """Provisional distance that only the first commit may settle.

    Every `arm` starts a new generation; a commit carrying an older
    generation (a timer started for a previous location) is refused.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.state = LatchState.IDLE
        self.generation = 0
        self.provisional = None
        self.value = 0.0
        self.source = None

    def arm(self, provisional: float) -> int:
        with self._lock:
            self.generation += 1
            self.state = LatchState.PENDING
            self.provisional = provisional
            self.value = 0.0
            self.source = None
            return self.generation

    def commit(self, value: float, source: str, generation: int = None) -> bool:
        with self._lock:
            if self.state is not LatchState.PENDING:
                return False
            if generation is not None and generation != self.generation:
                return False
            self.state = LatchState.COMMITTED
            self.value = value
            self.source = source
            return True

    def fail(self, generation: int) -> bool:
        """Drop a pending distance without committing; refused once settled."""
        with self._lock:
            if self.state is not LatchState.PENDING or generation != self.generation:
                return False
            self.generation += 1
            self.state = LatchState.IDLE
            self.provisional = None
            return True

    def reset(self):
        with self._lock:
            self.generation += 1
            self.state = LatchState.IDLE
            self.provisional = None
            self.value = 0.0
            self.source = None


Locator = Callable[[Callable, Callable], None]


class DeliveryDistanceResolver:
    """Tracks the delivery option, the client's location and the committed distance.

    `locate(on_success, on_error)` starts acquiring the device location and
    later calls one of the two callbacks. The map widget reports routed
    distances through `route_computed`.
    """

    def __init__(self, agency_coordinates, locate: Locator, scheduler=None,
                 fallback_seconds: float = DELIVERY_FALLBACK_SECONDS, clock=datetime.now):
        self.agency_point = normalize_coordinates(agency_coordinates)
        self.fallback_seconds = fallback_seconds
        self.latch = DistanceLatch()
        self.option = AGENCY_PICKUP
        self.user_location = None
        self.delivery_location = None
        self.locating = False
        self.error = None
        self._locate = locate
        self._scheduler = scheduler
        self._clock = clock
        self._fallback_job = None

    @property
    def distance(self) -> float:
        return self.latch.value if self.latch.state is LatchState.COMMITTED else 0.0

    @property
    def calculating(self) -> bool:
        return self.locating or self.latch.state is LatchState.PENDING

    def select_option(self, option: str):
        self.option = option
        if option != HOME_DELIVERY:
            self._cancel_fallback()
            self.latch.reset()
            self.delivery_location = None
            self.error = None
            return
        if self.user_location is None:
            self.request_location()
        else:
            self._start(self.delivery_location or self.user_location)

    def request_location(self):
        self.locating = True
        self.error = None
        self._locate(self.location_acquired, self.location_failed)

    retry_location = request_location

    def location_acquired(self, coordinates):
        self.locating = False
        point = parse_coordinates(coordinates)
        if point is None:
            self.location_failed("unreadable coordinates")
            return
        self.user_location = point
        if self.delivery_location is None:
            self.delivery_location = point
        if self.option == HOME_DELIVERY:
            self._start(self.delivery_location)

    def location_failed(self, reason):
        self.locating = False
        self.error = f"Unable to get your location: {reason}. Please try again."
        logger.warning("Geolocation failed: %s", reason)

    def delivery_location_changed(self, coordinates):
        point = parse_coordinates(coordinates)
        if point is None:
            self.error = "Please select a valid delivery location"
            return
        self.delivery_location = point
        if self.option == HOME_DELIVERY:
            self._start(point)

    def route_computed(self, distance_km) -> bool:
        """Routed distance in km from the map widget; True when it was committed."""
        generation = self.latch.generation
        if self.latch.state is not LatchState.PENDING:
            return False
        self._cancel_fallback()
        number = _number(distance_km)
        rounded = round(number, 1) if number is not None else None
        if rounded is None or not 0 < rounded < MAX_ROUTED_KM:
            # the fallback may have committed meanwhile; that value stands
            if self.latch.fail(generation):
                self.error = "Could not calculate the delivery distance. Please move the pin and try again."
                logger.error("Invalid routed distance: %r km", distance_km)
            return False
        return self.latch.commit(rounded, "route", generation)

    def _start(self, point: Coordinates):
        self._cancel_fallback()
        provisional = round(haversine_km(self.agency_point, point), 1)
        generation = self.latch.arm(provisional)
        self.error = None
        self._fallback_job = self._get_scheduler().add_job(
            self._fallback_fired,
            "date",
            run_date=self._clock() + timedelta(seconds=self.fallback_seconds),
            args=[generation],
        )

    def _fallback_fired(self, generation: int):
        if self.latch.commit(self.latch.provisional, "haversine", generation):
            logger.info("No routed distance after %ss, using haversine %.1f km",
                        self.fallback_seconds, self.latch.value)

    def _cancel_fallback(self):
        job, self._fallback_job = self._fallback_job, None
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            logger.debug("Fallback timer already ran")

    def _get_scheduler(self):
        if self._scheduler is None:
            self._scheduler = start_scheduler()
        return self._scheduler
