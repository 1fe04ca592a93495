"""
Caller identity for staff-only routes.

The verifier answers one question: may this request see staff projections.
Login and token issuance live elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Protocol, Sequence, Set

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_caller_role


@dataclass(frozen=True)
class Identity:
    """Verified caller."""

    subject: str
    roles: FrozenSet[str]
    claims: Dict[str, Any] = field(default_factory=dict, repr=False)


class IdentityVerifier(Protocol):
    async def verify(self, request: Request) -> Identity:
        ...


class JWTIdentityVerifier:
    """Verifies HS256 bearer tokens and requires one of the staff roles."""

    def __init__(
        self,
        secret: str,
        *,
        algorithms: Sequence[str] = ("HS256",),
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        required_roles: Iterable[str] = ("staff", "admin"),
    ) -> None:
        self.secret = secret
        self.algorithms = list(algorithms)
        self.audience = audience
        self.issuer = issuer
        self.required_roles = frozenset(required_roles)
        self.logger = get_logger("licences.identity")

    async def verify(self, request: Request) -> Identity:
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("Missing or invalid Authorization header")

        token = authorization[7:].strip()
        if not token:
            raise AuthenticationError("Authorization header contained empty bearer token")

        claims = self._decode(token)
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("JWT missing subject claim")

        roles = extract_roles(claims)
        granted = roles & self.required_roles
        if not granted:
            self.logger.warning("Staff access denied", subject=subject, roles=sorted(roles))
            raise AuthorizationError(details={"required_roles": sorted(self.required_roles)})

        set_caller_role(sorted(granted)[0])
        return Identity(subject=subject, roles=frozenset(roles), claims=claims)

    def _decode(self, token: str) -> Dict[str, Any]:
        if not self.secret:
            # An unset secret must never verify anything.
            raise AuthenticationError("Staff authentication is not configured")

        options: Dict[str, Any] = {"verify_aud": self.audience is not None}
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except ExpiredSignatureError as exc:
            raise AuthenticationError("JWT has expired") from exc
        except JWTError as exc:
            raise AuthenticationError("JWT validation failed", details={"error": str(exc)}) from exc


def extract_roles(claims: Dict[str, Any]) -> Set[str]:
    """Collect roles from the claim shapes issuers commonly use."""
    roles: Set[str] = set()

    role = claims.get("role")
    if isinstance(role, str) and role:
        roles.add(role)

    direct_roles = claims.get("roles")
    if isinstance(direct_roles, list):
        roles.update(item for item in direct_roles if isinstance(item, str))

    scope = claims.get("scope")
    if isinstance(scope, str):
        roles.update(scope.split())

    realm_access = claims.get("realm_access", {})
    if isinstance(realm_access, dict):
        realm_roles = realm_access.get("roles")
        if isinstance(realm_roles, list):
            roles.update(item for item in realm_roles if isinstance(item, str))

    return roles
