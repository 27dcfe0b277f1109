"""Caller identity for the inbound surface.

Token issuance and validation belong to an external identity service; this
package only consumes it through :class:`TokenVerifier`.
"""

from typing import Protocol

from .errors import Unauthorized


class TokenVerifier(Protocol):
    """Resolves a bearer token to a user id."""

    def verify(self, token: str) -> str:
        """Return the user id for a valid token.

        Raises:
            Unauthorized: If the token is invalid or expired
        """
        ...


def parse_bearer(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthorized: If the header is missing or malformed
    """
    if not authorization:
        raise Unauthorized("Authentication required")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid authorization header")
    return token.strip()
