"""
Test helper functions and factory methods for the licence map services.
"""

import time
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from jose import jwt

from service_licences.app.adapters import BusinessRecord, DataSourceAdapter
from service_licences.app.adapters.data_source import CategorySummary, filter_within_radius
from service_licences.app.geo import BoundingBox, GeoPoint

CALGARY_CITY_HALL = GeoPoint(lat=51.0447, lng=-114.0719)
TEST_JWT_SECRET = "test-secret-key"


class LicenceDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def socrata_row(
        busid: str = "BL-0001",
        *,
        name: str = "Bow River Coffee",
        licence_type: str = "FOOD SERVICE - PREMISES",
        lat: float = CALGARY_CITY_HALL.lat,
        lng: float = CALGARY_CITY_HALL.lng,
        **extra: Any,
    ) -> Dict[str, Any]:
        """One row as the Calgary open-data portal returns it."""
        row = {
            "getbusid": busid,
            "tradename": name,
            "licencetypes": licence_type,
            "jobstatusdesc": "Licensed",
            "comdistnm": "DOWNTOWN COMMERCIAL CORE",
            "first_iss_dt": "2021-03-15T00:00:00.000",
            "point": {"type": "Point", "coordinates": [lng, lat]},
        }
        row.update(extra)
        return row

    @staticmethod
    def business_record(
        identifier: str = "BL-0001",
        *,
        position: Optional[GeoPoint] = CALGARY_CITY_HALL,
        raw: Optional[Dict[str, Any]] = None,
        name: str = "Bow River Coffee",
    ) -> BusinessRecord:
        return BusinessRecord(
            identifier=identifier,
            name=name,
            category="FOOD SERVICE - PREMISES",
            license_type="FOOD SERVICE - PREMISES",
            status="Licensed",
            position=position,
            issue_date=date(2021, 3, 15),
            jurisdiction="AB",
            source="calgary",
            raw=raw if raw is not None else {"getbusid": identifier, "tradename": name},
        )


def create_staff_token(
    subject: str = "staff-user",
    roles: Iterable[str] = ("staff",),
    *,
    secret: str = TEST_JWT_SECRET,
    expires_in: int = 3600,
    **claims: Any,
) -> str:
    """Mint an HS256 token the way the upstream identity provider would."""
    now = int(time.time())
    payload = {"sub": subject, "roles": list(roles), "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class FakeDataSource(DataSourceAdapter):
    """In-memory adapter that counts calls and can be told to fail."""

    source_id = "calgary"

    def __init__(self, records: Optional[List[BusinessRecord]] = None, categories: Optional[List[CategorySummary]] = None):
        self.records = list(records or [])
        self.categories = list(categories or [])
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    async def fetch_by_bounding_box(self, box: BoundingBox, limit: int) -> List[BusinessRecord]:
        self._called("bbox")
        inside = [r for r in self.records if r.position is not None and box.contains(r.position)]
        return inside[:limit]

    async def fetch_by_radius(self, centre: GeoPoint, radius_metres: float, limit: int) -> List[BusinessRecord]:
        self._called("nearby")
        return filter_within_radius(self.records, centre, radius_metres, limit)

    async def fetch_categories(self, area: Optional[str], limit: int) -> List[CategorySummary]:
        self._called("categories")
        return self.categories[:limit]

    def _called(self, operation: str) -> None:
        self.calls.append(operation)
        if self.error is not None:
            raise self.error
