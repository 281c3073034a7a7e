"""HMAC-SHA256 signed URLs for Stowage.

A signed URL grants one capability (read/write/delete) on one object until
an expiry time:

    {base_url}/{bucket}/{path}?action=<action>&expires=<epoch>&signature=<hex>

Canonical string: "{action}\\n{bucket}\\n{path}\\n{expires}"
Signature: hex digest of HMAC-SHA256(secret, canonical_string)

SECURITY: Never log secrets or full signed URLs.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from stowage.errors import InvalidSignatureError, SignedUrlExpiredError
from stowage.models import SignedUrlAction


@dataclass(frozen=True)
class SignedUrlClaims:
    """The capability carried by a verified signed URL.

    Attributes:
        bucket: Bucket the URL grants access to.
        path: Object path within the bucket.
        action: Granted action.
        expires_at: Integer seconds (Unix epoch) after which the URL is void.
    """

    bucket: str
    path: str
    action: SignedUrlAction
    expires_at: int


def compute_url_signature(
    secret: str,
    bucket: str,
    path: str,
    action: SignedUrlAction | str,
    expires_at: int,
) -> str:
    """Compute the HMAC-SHA256 signature for a signed URL.

    Args:
        secret: Signing secret.
        bucket: Bucket name.
        path: Object path.
        action: Granted action.
        expires_at: Integer seconds (Unix epoch).

    Returns:
        Hex digest of HMAC-SHA256 signature.
    """
    canonical = f"{SignedUrlAction(action).value}\n{bucket}\n{path}\n{expires_at}"
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=canonical.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign_url(
    base_url: str,
    bucket: str,
    path: str,
    action: SignedUrlAction | str,
    expires_at: int,
    secret: str,
) -> str:
    """Build a signed URL for one object.

    Example:
        >>> sign_url("http://localhost/v1/signed", "docs", "a.txt", "read", 1704067200, "s")
        'http://localhost/v1/signed/docs/a.txt?action=read&expires=1704067200&signature=...'
    """
    action_value = SignedUrlAction(action).value
    signature = compute_url_signature(secret, bucket, path, action_value, expires_at)
    query = urlencode({"action": action_value, "expires": expires_at, "signature": signature})
    return f"{base_url.rstrip('/')}/{quote(bucket)}/{quote(path)}?{query}"


def _single(params: dict[str, list[str]], name: str) -> str:
    values = params.get(name)
    if not values or len(values) != 1:
        raise InvalidSignatureError(f"Signed URL is missing or repeats '{name}'")
    return values[0]


def verify_signature(
    secret: str,
    bucket: str,
    path: str,
    action: str,
    expires: str,
    signature: str,
    *,
    now: float | None = None,
) -> SignedUrlClaims:
    """Verify already-split signed URL parameters.

    Raises:
        InvalidSignatureError: If a parameter is malformed or the signature
            does not match.
        SignedUrlExpiredError: If the signature is valid but expired.
    """
    try:
        granted = SignedUrlAction(action)
        expires_at = int(expires)
    except ValueError as e:
        raise InvalidSignatureError(
            "Signed URL parameters are malformed", bucket=bucket, path=path
        ) from e

    computed = compute_url_signature(secret, bucket, path, granted, expires_at)
    if not hmac.compare_digest(computed, signature):
        raise InvalidSignatureError("Signature does not match", bucket=bucket, path=path)

    current = time.time() if now is None else now
    if current >= expires_at:
        raise SignedUrlExpiredError("Signed URL has expired", bucket=bucket, path=path)

    return SignedUrlClaims(bucket=bucket, path=path, action=granted, expires_at=expires_at)


def verify_signed_url(url: str, secret: str, now: float | None = None) -> SignedUrlClaims:
    """Verify a URL produced by sign_url.

    The base URL may have any number of segments, so each split of the URL
    path into "{bucket}/{path}" is tried until one reproduces the signature.
    Callers that route requests themselves should use verify_signature.

    Args:
        url: Full signed URL.
        secret: Signing secret.
        now: Override for the current Unix time (tests).

    Returns:
        SignedUrlClaims for the verified capability.

    Raises:
        InvalidSignatureError: If the URL is malformed or tampered with.
        SignedUrlExpiredError: If the URL is past its expiry.
    """
    parts = urlsplit(url)
    params = parse_qs(parts.query, keep_blank_values=True)
    action = _single(params, "action")
    expires = _single(params, "expires")
    signature = _single(params, "signature")

    segments = [unquote(s) for s in parts.path.split("/") if s]
    for index in range(len(segments) - 1):
        bucket = segments[index]
        path = "/".join(segments[index + 1 :])
        try:
            return verify_signature(secret, bucket, path, action, expires, signature, now=now)
        except InvalidSignatureError:
            continue

    raise InvalidSignatureError("Signature does not match")
