"""
Bearer tokens understood by the offline core.

Offline tokens are issued after a local credential check and have the form
``offline_<uuid>_<userId>``. Server tokens are JWTs; only the payload is
read here (the signature is the server's business).
"""

import base64
import binascii
import json
import uuid
from typing import Optional

OFFLINE_PREFIX = "offline_"


def make_offline_token(user_id: str) -> str:
    """Issue a synthetic token for a user authenticated against the local store."""
    return f"{OFFLINE_PREFIX}{uuid.uuid4()}_{user_id}"


def is_offline_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(OFFLINE_PREFIX)


def _decode_jwt_payload(token: str) -> Optional[dict]:
    parts = token.split(".")
    if len(parts) < 2 or not parts[1]:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_user_id(token: Optional[str]) -> Optional[str]:
    """
    Recover the user id embedded in a token.

    Args:
        token: Offline token or JWT

    Returns:
        User id, or None if the token carries none
    """
    if not token:
        return None

    if is_offline_token(token):
        # uuid4 strings contain dashes, never underscores
        parts = token[len(OFFLINE_PREFIX):].split("_", 1)
        if len(parts) == 2 and parts[1]:
            return parts[1]
        return None

    payload = _decode_jwt_payload(token)
    if not payload:
        return None
    user_id = payload.get("id") or payload.get("userId") or payload.get("sub")
    return str(user_id) if user_id is not None else None
