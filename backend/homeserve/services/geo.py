"""Great-circle distance and assignable-worker lookup."""

from decimal import Decimal
import math
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from ..models.booking import Booking
from ..models.worker import Worker
from ..repositories.factory import RepositoryFactory

EARTH_RADIUS_KM = 6371.0

Coordinates = Tuple[float, float]


class DistanceCalculator(Protocol):
    def distance_km(self, origin: Coordinates, destination: Coordinates) -> float: ...


class AssignableWorkerFinder(Protocol):
    def find_for_booking(self, booking: Booking, limit: int = 20) -> List[Worker]: ...


class HaversineDistanceCalculator:
    def distance_km(self, origin: Coordinates, destination: Coordinates) -> float:
        lat1, lon1 = map(math.radians, origin)
        lat2, lon2 = map(math.radians, destination)
        dlat = lat2 - lat1
        dlon = lon2 - lon1
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def address_coordinates(address: Optional[Mapping[str, Any]]) -> Optional[Coordinates]:
    """(lat, lon) from an address snapshot, or None when either is missing."""
    if not address:
        return None
    lat = address.get("latitude")
    lon = address.get("longitude")
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)


def worker_coordinates(worker: Optional[Worker]) -> Optional[Coordinates]:
    if worker is None or not worker.has_location:
        return None
    return float(worker.latitude), float(worker.longitude)


def distance_between(
    calculator: DistanceCalculator,
    address: Optional[Mapping[str, Any]],
    worker: Optional[Worker],
) -> Optional[Decimal]:
    """Distance in km (two decimals) when both ends have coordinates."""
    origin = address_coordinates(address)
    destination = worker_coordinates(worker)
    if origin is None or destination is None:
        return None
    return Decimal(str(round(calculator.distance_km(origin, destination), 2)))


class CityWorkerFinder:
    """Active workers in the booking's city, nearest first when coordinates are known."""

    def __init__(self, db: Session, calculator: Optional[DistanceCalculator] = None):
        self.workers = RepositoryFactory.create_worker_repository(db)
        self.calculator = calculator or HaversineDistanceCalculator()

    def find_for_booking(self, booking: Booking, limit: int = 20) -> List[Worker]:
        city = booking.city or (booking.address or {}).get("city")
        candidates = self.workers.list_active_in_city(city, limit=200)
        origin = address_coordinates(booking.address)
        if origin is not None:
            located = [w for w in candidates if w.has_location]
            unlocated = [w for w in candidates if not w.has_location]
            located.sort(
                key=lambda w: self.calculator.distance_km(origin, (w.latitude, w.longitude))
            )
            candidates = located + unlocated
        return candidates[:limit]
