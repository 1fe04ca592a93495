"""
City of Calgary business licence adapter (Socrata dataset vdjc-pybd).
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import httpx

from shared.errors import UpstreamUnavailable
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from service_licences.app.geo import BoundingBox, GeoPoint, bounding_box_for_radius

from .data_source import BusinessRecord, CategorySummary, DataSourceAdapter, filter_within_radius

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_BASE_URL = "https://data.calgary.ca/resource/vdjc-pybd.json"
SOCRATA_PAGE_LIMIT = 1000
DEFAULT_CATEGORY_LIMIT = 200
RADIUS_OVERFETCH_FACTOR = 2


class UpstreamResponseError(Exception):
    """Upstream answered, but not with usable data."""

    def __init__(self, status_code: int, message: str, *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status_code = status_code
        if retryable is None:
            retryable = status_code == 429 or status_code >= 500
        self.retryable = retryable


def is_retryable(exc: Exception) -> bool:
    """Network failures, timeouts, rate limiting and server errors are retried."""
    if isinstance(exc, UpstreamResponseError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


class CalgaryBusinessLicenceAdapter(DataSourceAdapter):
    """Reads business licences from the Calgary open-data portal."""

    source_id = "calgary"
    jurisdiction = "AB"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        app_token: str = "",
        *,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("licences.adapters.calgary")
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)

        self._headers = {"Accept": "application/json"}
        if app_token:
            self._headers["X-App-Token"] = app_token

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_by_bounding_box(self, box: BoundingBox, limit: int = SOCRATA_PAGE_LIMIT) -> List[BusinessRecord]:
        where = (
            "POINT IS NOT NULL AND within_box(POINT, "
            f"{_soql_number(box.north)}, {_soql_number(box.west)}, "
            f"{_soql_number(box.south)}, {_soql_number(box.east)})"
        )
        rows = await self._query(
            "bbox",
            {"$where": where, "$limit": limit, "$order": "FIRST_ISS_DT DESC"},
        )
        return [self.to_business_record(row) for row in rows]

    async def fetch_by_radius(self, centre: GeoPoint, radius_metres: float, limit: int = SOCRATA_PAGE_LIMIT) -> List[BusinessRecord]:
        # Upstream has no circular query: fetch the enclosing box, then cut the circle.
        box = bounding_box_for_radius(centre, radius_metres)
        candidates = await self.fetch_by_bounding_box(box, limit * RADIUS_OVERFETCH_FACTOR)
        matches = filter_within_radius(candidates, centre, radius_metres, limit)

        self.logger.debug(
            "Radius query filtered",
            candidates=len(candidates),
            matches=len(matches),
            radius_metres=radius_metres,
        )
        return matches

    async def fetch_categories(self, area: Optional[str] = None, limit: int = DEFAULT_CATEGORY_LIMIT) -> List[CategorySummary]:
        params: Dict[str, Any] = {
            "$select": "licencetypes, count(*) AS count",
            "$group": "licencetypes",
            "$order": "count DESC",
            "$limit": limit,
        }
        where = "licencetypes IS NOT NULL"
        if area:
            where += f" AND comdistnm = {_soql_string(area)}"
        params["$where"] = where

        rows = await self._query("categories", params)

        summaries: List[CategorySummary] = []
        for row in rows:
            category = _text(row.get("licencetypes"))
            if not category:
                continue
            try:
                count = int(str(row.get("count")))
            except (TypeError, ValueError):
                self.logger.warning("Dropping category row with unreadable count", category=category)
                continue
            summaries.append(CategorySummary(category=category, count=count, source=self.source_id))

        summaries.sort(key=lambda summary: summary.count, reverse=True)
        return summaries

    def to_business_record(self, row: Mapping[str, Any]) -> BusinessRecord:
        """Normalize one upstream row. The row itself is kept verbatim in ``raw``."""
        licence_types = _text(row.get("licencetypes"))
        return BusinessRecord(
            identifier=_text(row.get("getbusid")) or self._derived_identifier(row),
            name=_text(row.get("tradename")) or "Unknown Business",
            category=licence_types or "Uncategorized",
            license_type=licence_types or "",
            status=_text(row.get("jobstatusdesc")) or "Active",
            position=_parse_point(row.get("point")),
            issue_date=_parse_date(row.get("first_iss_dt")),
            jurisdiction=self.jurisdiction,
            source=self.source_id,
            raw=dict(row),
        )

    async def _query(self, operation: str, params: Dict[str, Any]) -> List[Mapping[str, Any]]:
        send = retry_on_exception(
            (httpx.TransportError, UpstreamResponseError),
            config=self.retry_config,
            retry_if=is_retryable,
        )(self._send)

        try:
            rows = await send(params)
        except RetryError as exc:
            self._record(operation, "exhausted")
            raise UpstreamUnavailable(
                self.source_id,
                details={"operation": operation, "attempts": exc.attempts},
            ) from exc
        except UpstreamResponseError as exc:
            self._record(operation, "rejected")
            self.logger.error(
                "Upstream rejected request",
                operation=operation,
                status_code=exc.status_code,
                error=str(exc),
            )
            raise UpstreamUnavailable(
                self.source_id,
                details={"operation": operation, "status_code": exc.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            self._record(operation, "error")
            self.logger.error("Upstream request failed", operation=operation, error=str(exc))
            raise UpstreamUnavailable(self.source_id, details={"operation": operation}) from exc

        self._record(operation, "success")
        return rows

    async def _send(self, params: Dict[str, Any]) -> List[Mapping[str, Any]]:
        response = await self._client.get(
            self.base_url,
            params=params,
            headers=self._headers,
            timeout=self.timeout,
        )

        if not response.is_success:
            raise UpstreamResponseError(response.status_code, f"Upstream returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamResponseError(response.status_code, "Upstream body is not JSON", retryable=False) from exc

        if not isinstance(payload, list):
            raise UpstreamResponseError(response.status_code, "Upstream body is not a JSON array", retryable=False)
        if not all(isinstance(row, Mapping) for row in payload):
            raise UpstreamResponseError(response.status_code, "Upstream array contains non-object rows", retryable=False)

        return payload

    def _record(self, operation: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_upstream_request(self.source_id, operation, outcome)

    def _derived_identifier(self, row: Mapping[str, Any]) -> str:
        material = json.dumps(row, sort_keys=True, separators=(",", ":"), default=str)
        return f"{self.source_id}-{hashlib.sha1(material.encode('utf-8')).hexdigest()[:16]}"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_point(value: Any) -> Optional[GeoPoint]:
    """GeoJSON point ``{"type": "Point", "coordinates": [lng, lat]}`` or None."""
    if not isinstance(value, Mapping):
        return None
    coordinates = value.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None
    try:
        lng = float(coordinates[0])
        lat = float(coordinates[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return GeoPoint(lat=lat, lng=lng)


def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _soql_number(value: float) -> str:
    return f"{value:.7f}"


def _soql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
