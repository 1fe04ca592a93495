"""
Unit tests for the Calgary business licence adapter.
"""

from datetime import date
from typing import Callable, List

import httpx
import pytest

from shared.errors import UpstreamUnavailable
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import CALGARY_CITY_HALL, LicenceDataFactory
from service_licences.app.adapters import CalgaryBusinessLicenceAdapter
from service_licences.app.geo import BoundingBox

BASE_URL = "https://data.example.org/resource/licences.json"


def make_adapter(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> CalgaryBusinessLicenceAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CalgaryBusinessLicenceAdapter(
        BASE_URL,
        client=client,
        retry_config=RetryConfig(max_attempts=3, base_delay=0.0, jitter=False),
        **kwargs,
    )


class TestBoundingBoxQuery:
    """Test cases for fetch_by_bounding_box."""

    @pytest.mark.asyncio
    async def test_builds_within_box_query(self):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[LicenceDataFactory.socrata_row()])

        adapter = make_adapter(handler, app_token="token-123")
        box = BoundingBox(north=51.06, south=51.03, east=-114.05, west=-114.09)

        records = await adapter.fetch_by_bounding_box(box, 25)

        assert len(requests) == 1
        params = requests[0].url.params
        assert params["$where"] == (
            "POINT IS NOT NULL AND within_box(POINT, 51.0600000, -114.0900000, 51.0300000, -114.0500000)"
        )
        assert params["$limit"] == "25"
        assert params["$order"] == "FIRST_ISS_DT DESC"
        assert requests[0].headers["X-App-Token"] == "token-123"

        record = records[0]
        assert record.identifier == "BL-0001"
        assert record.name == "Bow River Coffee"
        assert record.position == CALGARY_CITY_HALL
        assert record.issue_date == date(2021, 3, 15)
        assert record.jurisdiction == "AB"
        assert record.source == "calgary"

    @pytest.mark.asyncio
    async def test_missing_fields_get_defaults(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"point": {"type": "Point", "coordinates": ["bad", 51.0]}}])

        records = await make_adapter(handler).fetch_by_bounding_box(
            BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0), 10
        )

        record = records[0]
        assert record.name == "Unknown Business"
        assert record.category == "Uncategorized"
        assert record.license_type == ""
        assert record.status == "Active"
        assert record.position is None
        assert record.issue_date is None
        assert record.identifier.startswith("calgary-")

    @pytest.mark.asyncio
    async def test_derived_identifier_is_stable(self):
        row = {"tradename": "No Id Ltd"}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[row])

        adapter = make_adapter(handler)
        box = BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0)
        first = await adapter.fetch_by_bounding_box(box, 10)
        second = await adapter.fetch_by_bounding_box(box, 10)

        assert first[0].identifier == second[0].identifier

    @pytest.mark.asyncio
    async def test_raw_payload_is_kept_but_not_in_repr(self):
        row = LicenceDataFactory.socrata_row(owner_name="Jane Doe")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[row])

        records = await make_adapter(handler).fetch_by_bounding_box(
            BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0), 10
        )

        assert records[0].raw["owner_name"] == "Jane Doe"
        assert "Jane Doe" not in repr(records[0])


class TestRadiusQuery:
    """Test cases for fetch_by_radius."""

    @pytest.mark.asyncio
    async def test_filters_to_exact_circle(self):
        requests: List[httpx.Request] = []
        rows = [
            LicenceDataFactory.socrata_row("NEAR", lat=51.0483, lng=-114.0719),   # ~400 m
            LicenceDataFactory.socrata_row("FAR", lat=51.0555, lng=-114.0719),    # ~1200 m
            LicenceDataFactory.socrata_row("NOWHERE", point=None),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=rows)

        records = await make_adapter(handler).fetch_by_radius(CALGARY_CITY_HALL, 1000, 10)

        assert [r.identifier for r in records] == ["NEAR"]
        # Over-fetch from the enclosing box.
        assert requests[0].url.params["$limit"] == "20"

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self):
        rows = [LicenceDataFactory.socrata_row(f"BL-{i}") for i in range(5)]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=rows)

        records = await make_adapter(handler).fetch_by_radius(CALGARY_CITY_HALL, 500, 3)
        assert len(records) == 3


class TestCategoryQuery:
    """Test cases for fetch_categories."""

    @pytest.mark.asyncio
    async def test_grouped_counts_sorted_and_cleaned(self):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[
                {"licencetypes": "RETAIL DEALER - PREMISES", "count": "12"},
                {"licencetypes": "FOOD SERVICE - PREMISES", "count": "30"},
                {"licencetypes": "", "count": "4"},
                {"licencetypes": "CONTRACTOR", "count": "n/a"},
            ])

        summaries = await make_adapter(handler).fetch_categories(None, 50)

        assert [(s.category, s.count) for s in summaries] == [
            ("FOOD SERVICE - PREMISES", 30),
            ("RETAIL DEALER - PREMISES", 12),
        ]
        params = requests[0].url.params
        assert params["$group"] == "licencetypes"
        assert params["$where"] == "licencetypes IS NOT NULL"
        assert params["$limit"] == "50"

    @pytest.mark.asyncio
    async def test_area_filter_is_quoted(self):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[])

        await make_adapter(handler).fetch_categories("O'BRIEN PARK", 10)

        assert requests[0].url.params["$where"] == "licencetypes IS NOT NULL AND comdistnm = 'O''BRIEN PARK'"


class TestUpstreamFailures:
    """Test cases for retry and failure classification."""

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=[LicenceDataFactory.socrata_row()])

        metrics = MetricsCollector("licences-test")
        adapter = make_adapter(handler, metrics=metrics)
        records = await adapter.fetch_by_bounding_box(BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0), 10)

        assert len(attempts) == 3
        assert len(records) == 1
        success = metrics.registry.get_sample_value(
            "upstream_requests_total",
            {"source": "calgary", "operation": "bbox", "outcome": "success"},
        )
        assert success == 1.0

    @pytest.mark.asyncio
    async def test_network_errors_are_retried_until_exhausted(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await make_adapter(handler).fetch_by_bounding_box(
                BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0), 10
            )

        assert len(attempts) == 3
        assert exc_info.value.details["attempts"] == 3
        assert exc_info.value.source == "calgary"

    @pytest.mark.asyncio
    async def test_rate_limited_response_is_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(429) if len(attempts) == 1 else httpx.Response(200, json=[])

        await make_adapter(handler).fetch_categories(None, 10)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(400, json={"message": "bad query"})

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await make_adapter(handler).fetch_categories(None, 10)

        assert len(attempts) == 1
        assert exc_info.value.details["status_code"] == 400

    @pytest.mark.asyncio
    async def test_non_array_body_is_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(200, json={"error": "unexpected"})

        with pytest.raises(UpstreamUnavailable):
            await make_adapter(handler).fetch_categories(None, 10)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_non_object_rows_are_rejected_without_retry(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(200, json=[LicenceDataFactory.socrata_row(), "garbage"])

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await make_adapter(handler).fetch_by_bounding_box(
                BoundingBox(north=52.0, south=50.0, east=-113.0, west=-115.0), 10
            )

        assert len(attempts) == 1
        assert exc_info.value.details["status_code"] == 200

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
        adapter = CalgaryBusinessLicenceAdapter(BASE_URL, client=client)

        await adapter.close()

        assert client.is_closed is False
        await client.aclose()


def test_point_outside_valid_range_is_dropped():
    adapter = CalgaryBusinessLicenceAdapter(BASE_URL, client=httpx.AsyncClient())
    record = adapter.to_business_record(
        {"getbusid": "X", "point": {"type": "Point", "coordinates": [-114.0, 95.0]}}
    )
    assert record.position is None
