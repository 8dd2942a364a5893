"""Token and request-signature verification helpers."""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from qstash import Receiver
from qstash.errors import SignatureError

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Optional[Dict[str, Any]]:
    """Verify an identity-provider access token and return its claims."""
    settings = settings or get_settings()
    if not settings.auth_jwt_secret:
        logger.warning("auth_jwt_secret is not configured, rejecting bearer token")
        return None
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
        )
    except JWTError as exc:
        logger.info(f"Access token rejected: {exc}")
        return None


def verify_qstash_signature(
    signature: Optional[str],
    body: bytes,
    url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> bool:
    """
    Verify an ``Upstash-Signature`` header with the QStash SDK receiver.

    The receiver checks the JWT against the current signing key and falls back
    to the next one, so key rotation does not drop requests. When no key is
    configured every request is accepted.
    """
    settings = settings or get_settings()
    current_key = settings.qstash_current_signing_key
    if not current_key:
        logger.warning("QStash signing keys not configured, skipping verification")
        return True

    if not signature:
        logger.error("QStash: No signature header found")
        return False

    receiver = Receiver(
        current_signing_key=current_key,
        next_signing_key=settings.qstash_next_signing_key or current_key,
    )
    try:
        receiver.verify(signature=signature, body=body.decode("utf-8", errors="replace"), url=url)
    except SignatureError as exc:
        logger.error(f"QStash verification failed: {exc}")
        return False
    return True


def verify_cron_secret(authorization: Optional[str], settings: Optional[Settings] = None) -> bool:
    """Check ``Authorization: Bearer <CRON_SECRET>`` from the cron scheduler."""
    settings = settings or get_settings()
    if not settings.cron_secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {settings.cron_secret}")


def verify_portpro_webhook_signature(
    signature: Optional[str],
    body: bytes,
    settings: Optional[Settings] = None,
) -> bool:
    """
    Verify PortPro's ``X-Hub-Signature`` header.

    Accepts ``sha1=<hex HMAC-SHA1 of the raw body>`` keyed with the webhook
    secret, and the bare secret itself, which is what PortPro sends for
    webhooks registered with a plain token. When no secret is configured
    every request is accepted.
    """
    settings = settings or get_settings()
    secret = settings.portpro_webhook_secret
    if not secret:
        logger.warning("PortPro webhook secret not configured, skipping verification")
        return True

    if not signature:
        logger.error("PortPro webhook: No signature header found")
        return False

    token = signature[len("sha1="):] if signature.startswith("sha1=") else signature
    expected = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    if hmac.compare_digest(token.lower().encode(), expected.encode()) or hmac.compare_digest(
        token.encode(), secret.encode()
    ):
        return True

    logger.warning("Invalid PortPro webhook signature")
    return False
