"""
OAuth `state` helper for the Strava handshake.

The state is base64url("<user_id>:<64 hex chars>"). The callback recovers
the user id from it without any server-side storage.

NOTE: the random part is not checked against anything on the way back, so
this binds the callback to a user id but is a weaker CSRF guard than a
stored nonce. Changing it changes the redirect contract; see DESIGN.md.
"""

from __future__ import annotations

import base64
import binascii
import secrets


class InvalidOAuthState(ValueError):
    """State missing, not base64url, or without a user id."""


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


def create_oauth_state(user_id: str) -> str:
    nonce = secrets.token_hex(32)
    return _b64url_encode(f"{user_id}:{nonce}".encode("utf-8"))


def decode_oauth_state(state: str | None) -> str:
    """Return the user id carried by `state`, or raise InvalidOAuthState."""
    if not state:
        raise InvalidOAuthState("missing state")
    try:
        decoded = _b64url_decode(state).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidOAuthState("state is not valid base64url") from e

    user_id, sep, nonce = decoded.rpartition(":")
    if not sep or not user_id or not nonce:
        raise InvalidOAuthState("state does not carry a user id")
    return user_id
