"""Normalized place record shared by every provider."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


@dataclass
class Place:
    id: str
    name: str
    category: str
    address: str
    city: str
    country: str
    latitude: float
    longitude: float
    rating: Optional[float] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    distance_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ProviderBatch = List[Place]


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float
