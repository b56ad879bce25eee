"""Auth middleware -- FastAPI dependencies for extracting the current user.

The hosting platform authenticates the caller and forwards the identity in
an ``X-MS-CLIENT-PRINCIPAL`` header: base64-encoded JSON of the form
``{"userId": ..., "userDetails": <email>, "userRoles": [...]}``.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Optional

from fastapi import Header, HTTPException, status

from tiermod.auth.models import User

PRINCIPAL_HEADER = "X-MS-CLIENT-PRINCIPAL"


def parse_client_principal(value: str) -> Optional[User]:
    """Decode a client principal header into a :class:`User`.

    Returns ``None`` when the header is malformed or has no user id.
    """
    try:
        data = json.loads(base64.b64decode(value))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(data, dict) or not data.get("userId"):
        return None
    roles = data.get("userRoles") or []
    if not isinstance(roles, list):
        roles = []
    return User(id=str(data["userId"]), email=str(data.get("userDetails") or ""), roles=roles)


def encode_client_principal(user_id: str, email: str = "", roles: Optional[list[str]] = None) -> str:
    """Build a header value for *user_id* (used by tests and local tooling)."""
    payload = {"userId": user_id, "userDetails": email, "userRoles": roles or ["authenticated"]}
    return base64.b64encode(json.dumps(payload).encode()).decode()


async def get_current_user(
    principal: Optional[str] = Header(None, alias=PRINCIPAL_HEADER),
) -> User:
    """FastAPI dependency returning the authenticated caller.

    Raises ``401 Unauthorized`` if the principal header is missing or invalid.
    """
    user = parse_client_principal(principal) if principal else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user
