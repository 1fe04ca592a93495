"""
Visibility transforms: the single choke-point between canonical records
and what a caller may see.
"""

from .visibility import (
    PublicProjection,
    StaffProjection,
    to_public_projection,
    to_public_projections,
    to_staff_projection,
    to_staff_projections,
)

__all__ = [
    "PublicProjection",
    "StaffProjection",
    "to_public_projection",
    "to_public_projections",
    "to_staff_projection",
    "to_staff_projections",
]
