"""
DataSourceAdapter contract and the canonical record types it produces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

from service_licences.app.geo import BoundingBox, GeoPoint, haversine_metres


@dataclass(frozen=True)
class BusinessRecord:
    """Canonical business licence record.

    ``raw`` holds the verbatim upstream payload and is the only place owner
    and contact details live. It is excluded from repr so records can be
    logged safely.
    """

    identifier: str
    name: str
    category: str
    license_type: str
    status: str
    position: Optional[GeoPoint]
    issue_date: Optional[date]
    jurisdiction: str
    source: str
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class CategorySummary:
    """Licence count for one category. Never carries PII."""

    category: str
    count: int
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "count": self.count, "source": self.source}


class DataSourceAdapter(ABC):
    """Contract every upstream business licence source satisfies."""

    source_id: str

    @abstractmethod
    async def fetch_by_bounding_box(self, box: BoundingBox, limit: int) -> List[BusinessRecord]:
        """Records inside ``box``, at most ``limit``."""

    @abstractmethod
    async def fetch_by_radius(self, centre: GeoPoint, radius_metres: float, limit: int) -> List[BusinessRecord]:
        """Records within ``radius_metres`` great-circle distance of ``centre``."""

    @abstractmethod
    async def fetch_categories(self, area: Optional[str], limit: int) -> List[CategorySummary]:
        """Category counts sorted by descending count."""

    async def close(self) -> None:
        return None


def filter_within_radius(
    records: Iterable[BusinessRecord],
    centre: GeoPoint,
    radius_metres: float,
    limit: int,
) -> List[BusinessRecord]:
    """Exact circle filter: drop unpositioned records and anything beyond the radius."""
    matches: List[BusinessRecord] = []
    for record in records:
        if len(matches) >= limit:
            break
        if record.position is None:
            continue
        if haversine_metres(centre, record.position) <= radius_metres:
            matches.append(record)
    return matches
