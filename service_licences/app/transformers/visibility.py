"""
Public and staff projections of BusinessRecord.

PublicProjection is built field by field from an explicit whitelist and
forbids extra fields, so the raw upstream payload has no way in. Neither
function checks authorization: callers reach the staff projection only
after the identity verifier has accepted the request.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from service_licences.app.adapters.data_source import BusinessRecord


class PublicProjection(BaseModel):
    """Public-safe business record. No owner, contact or address details."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    category: str
    license_type: str
    status: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    issue_date: Optional[date] = None
    jurisdiction: str
    source: str


class StaffProjection(PublicProjection):
    """Full record for authenticated staff, upstream payload under ``raw``."""

    raw: Dict[str, Any]


def to_public_projection(record: BusinessRecord) -> PublicProjection:
    position = record.position
    return PublicProjection(
        id=record.identifier,
        name=record.name,
        category=record.category,
        license_type=record.license_type,
        status=record.status,
        lat=position.lat if position else None,
        lng=position.lng if position else None,
        issue_date=record.issue_date,
        jurisdiction=record.jurisdiction,
        source=record.source,
    )


def to_staff_projection(record: BusinessRecord) -> StaffProjection:
    public = to_public_projection(record)
    return StaffProjection(**public.model_dump(), raw=dict(record.raw))


def to_public_projections(records: Iterable[BusinessRecord]) -> List[PublicProjection]:
    return [to_public_projection(record) for record in records]


def to_staff_projections(records: Iterable[BusinessRecord]) -> List[StaffProjection]:
    return [to_staff_projection(record) for record in records]
