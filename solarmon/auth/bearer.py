"""
Bearer token authentication for the dashboard and management API.

Parses API tokens from the API_TOKENS environment variable and resolves an
incoming ``Authorization: Bearer {token}`` header (or ``?token=`` on the
live WebSocket) to a Principal carrying the caller's organization and role.
Uses constant-time comparison via secrets.compare_digest.

CHANGELOG:
- 2026-10-17: Resolve tokens to Principal(organization_id, role)
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
import secrets
from dataclasses import dataclass

from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from solarmon.db.models import USER_ROLES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Identity supplied to every management and query call.

    Attributes:
        organization_id: The caller's tenant.
        role: One of admin, user, viewer.
    """

    organization_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def scope(self) -> int | None:
        """Tenant filter for queries; None means unrestricted (admin)."""
        return None if self.is_admin else self.organization_id

    @property
    def can_write(self) -> bool:
        return self.role != "viewer"


def parse_api_tokens(raw: str) -> dict[str, Principal]:
    """Parse the API_TOKENS environment variable into a token-to-principal map.

    Format: "token1:org_id:role,token2:org_id:role"

    Malformed entries (wrong field count, non-integer organization id,
    unknown role) are skipped with a warning that never includes the token.

    Args:
        raw: The raw comma-separated string.

    Returns:
        dict[str, Principal]: Mapping of token -> Principal.
    """
    if not raw or not raw.strip():
        return {}

    token_map: dict[str, Principal] = {}
    for idx, entry in enumerate(raw.split(",")):
        parts = [p.strip() for p in entry.strip().split(":")]
        if len(parts) != 3 or not all(parts):
            logger.warning(
                "Skipping malformed API_TOKENS entry at position %d"
                " (expected token:organization_id:role)",
                idx,
            )
            continue
        token, org_id, role = parts
        if not org_id.isdigit():
            logger.warning(
                "Skipping API_TOKENS entry at position %d"
                " (organization_id is not an integer)",
                idx,
            )
            continue
        if role not in USER_ROLES:
            logger.warning(
                "Skipping API_TOKENS entry at position %d (unknown role %r)",
                idx,
                role,
            )
            continue
        token_map[token] = Principal(organization_id=int(org_id), role=role)
    return token_map


def verify_token(
    token: str,
    token_map: dict[str, Principal],
) -> Principal | None:
    """Validate a token against the token map using constant-time comparison.

    Args:
        token: The presented token.
        token_map: Mapping of valid token -> Principal.

    Returns:
        Principal | None: The principal if the token is valid, None otherwise.
    """
    if not token:
        return None

    for registered_token, principal in token_map.items():
        if secrets.compare_digest(
            token.encode("utf-8"), registered_token.encode("utf-8")
        ):
            return principal

    return None


class BearerAuth:
    """FastAPI-compatible Bearer token authentication dependency.

    Attributes:
        token_map: Mapping of valid token -> Principal.
        scheme: FastAPI HTTPBearer security scheme.
    """

    def __init__(self, token_map: dict[str, Principal]) -> None:
        self.token_map = token_map
        self.scheme = HTTPBearer(auto_error=False)

    def resolve(self, token: str | None) -> Principal | None:
        """Resolve a raw token (e.g. from a query string) to a Principal."""
        return verify_token(token or "", self.token_map)

    async def verify(self, request: Request) -> Principal:
        """FastAPI dependency that validates Bearer tokens.

        Args:
            request: The incoming FastAPI request.

        Returns:
            Principal: The caller's identity.

        Raises:
            HTTPException: 401 Unauthorized if the token is invalid or missing.
        """
        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)

        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Missing authorization credentials.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        principal = verify_token(credentials.credentials, self.token_map)

        if principal is None:
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return principal
