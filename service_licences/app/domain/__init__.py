"""
Domain layer: query orchestration and caller identity.
"""

from .identity import Identity, IdentityVerifier, JWTIdentityVerifier, extract_roles
from .query_service import Audience, QueryLimits, QueryResult, QueryService

__all__ = [
    "Audience",
    "Identity",
    "IdentityVerifier",
    "JWTIdentityVerifier",
    "QueryLimits",
    "QueryResult",
    "QueryService",
    "extract_roles",
]
