"""
Client-side JSON Web Token inspection.

Nothing in this module verifies signatures. A decoded token tells you what the
token claims, not whether those claims are true; ask the introspection
endpoint for that.
"""

import json
import time
import typing as t

from joserfc import jws
from joserfc.errors import JoseError

from oidc_playground.types import DecodedJwt, InvalidToken

EXPIRED_LABEL = "Expired"
NO_EXPIRY_LABEL = "No expiry"


def decode(token: str) -> DecodedJwt | InvalidToken:
    """
    Split a compact JWT into header, payload and signature.

    Returns `InvalidToken` instead of raising when the value is not three
    non-empty dot-separated segments, when the header is not a base64url JSON
    object with an `alg`, or when the payload is not a base64url JSON object.
    The signature segment is kept as-is.
    """
    segments = (token or "").strip().split(".")

    if len(segments) != 3:
        return InvalidToken(reason=f"Expected 3 segments, found {len(segments)}")

    if not all(segments):
        return InvalidToken(reason="Empty segment")

    try:
        compact = jws.extract_compact(".".join(segments).encode("utf-8"))
        header = compact.protected
        payload = json.loads(compact.payload)
    except (JoseError, ValueError, TypeError, RecursionError) as e:
        return InvalidToken(reason=f"Malformed token: {e}")

    if not isinstance(header, dict) or "alg" not in header:
        return InvalidToken(reason="Header is not a JSON object with an alg")

    if not isinstance(payload, dict):
        return InvalidToken(reason="Payload is not a JSON object")

    return DecodedJwt(header=header, payload=payload, signature=segments[2])


def _now_ms(now: float | None) -> float:
    return (time.time() if now is None else now) * 1000


def _timestamp(payload: t.Mapping[str, t.Any], claim: str) -> float | None:
    value = payload.get(claim)

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None

    return value


def is_expired(payload: t.Mapping[str, t.Any], now: float | None = None) -> bool:
    """
    Return `True` if the payload has an `exp` claim that is in the past.

    `now` is Unix seconds and defaults to the current time.
    """
    exp = _timestamp(payload, "exp")
    return exp is not None and _now_ms(now) > exp * 1000


def is_not_yet_valid(payload: t.Mapping[str, t.Any], now: float | None = None) -> bool:
    """
    Return `True` if the payload has an `nbf` claim that is still in the future.

    Kept separate from `is_expired`.
    """
    nbf = _timestamp(payload, "nbf")
    return nbf is not None and _now_ms(now) < nbf * 1000


def time_remaining(payload: t.Mapping[str, t.Any], now: float | None = None) -> str:
    exp = _timestamp(payload, "exp")

    if exp is None:
        return NO_EXPIRY_LABEL

    if is_expired(payload, now):
        return EXPIRED_LABEL

    minutes = int((exp * 1000 - _now_ms(now)) // 60_000)
    return f"{minutes // 60}h {minutes % 60}m"
