from __future__ import annotations

import hashlib
import hmac

_PREFIX = "booking"


def _signature(booking_id: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), booking_id.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()[:16]


def issue_ticket(booking_id: str, secret: str) -> str:
    """
    Build the opaque ticket token carried by a paid booking: `booking:<id>:<sig>`.

    The token is deterministic so issuing it twice for the same booking yields the same value.
    """
    return f"{_PREFIX}:{booking_id}:{_signature(booking_id, secret)}"


def read_ticket(payload: str, secret: str) -> str:
    """Return the booking id of a ticket token, raising ValueError if it is malformed or forged."""
    parts = payload.split(":")
    if len(parts) != 3 or parts[0] != _PREFIX or not parts[1]:
        raise ValueError("invalid ticket format")
    booking_id, signature = parts[1], parts[2]
    if not hmac.compare_digest(signature, _signature(booking_id, secret)):
        raise ValueError("ticket signature mismatch")
    return booking_id
