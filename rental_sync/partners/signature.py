"""HMAC verification of OLX Group webhook notifications."""

import hashlib
import hmac
from typing import Any, Mapping, Optional


def compute_signature(object_id: str, transaction_id: str, secret: str) -> str:
    """Hex HMAC-SHA1 of "{object_id},{transaction_id}" keyed by secret."""
    message = f"{object_id},{transaction_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha1).hexdigest()


def verify_signature(
    payload: Mapping[str, Any], signature: Optional[str], secret: Optional[str]
) -> bool:
    """Check the x-signature header of a notification.

    Fails closed when object_id or transaction_id is absent. Length
    mismatches compare as unequal.

    Args:
        payload: Decoded JSON body
        signature: Value of the x-signature header
        secret: Shared webhook secret

    Returns:
        True if the signature matches
    """
    object_id = payload.get("object_id")
    transaction_id = payload.get("transaction_id")
    if not object_id or not transaction_id or not signature or not secret:
        return False

    expected = compute_signature(str(object_id), str(transaction_id), secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))
