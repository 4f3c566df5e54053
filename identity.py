"""
Identity provider adapters.

Credentials are verified upstream (the authenticating gateway / hosted
identity service). By the time a request reaches us it carries a bearer
token whose claims we trust: ``sub``, ``email`` and ``name``.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional, Protocol

from errors import UnauthorizedError


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    display_name: Optional[str] = None


class IdentityProvider(Protocol):
    def resolve(self, token: str) -> Identity:
        ...


def encode_claims(sub: str, email: str, name: Optional[str] = None) -> str:
    """Build a claims token; the gateway does this, tests and tooling reuse it."""
    payload = json.dumps({"sub": sub, "email": email, "name": name}).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


class GatewayIdentityProvider:
    """Decodes base64url JSON claims forwarded by the authenticating gateway."""

    def resolve(self, token: str) -> Identity:
        if not token:
            raise UnauthorizedError("Authentication required")
        padded = token + "=" * (-len(token) % 4)
        try:
            claims = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, UnicodeError, ValueError):
            raise UnauthorizedError("Malformed identity token")
        if not isinstance(claims, dict) or not claims.get("sub") or not claims.get("email"):
            raise UnauthorizedError("Identity token is missing required claims")
        return Identity(
            id=str(claims["sub"]),
            email=str(claims["email"]),
            display_name=claims.get("name"),
        )
