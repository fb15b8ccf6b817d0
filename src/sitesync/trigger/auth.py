"""Authentication of inbound deployment requests.

Two independent credentials are accepted:

- a manual override key, compared exactly against the configured value;
  a wrong key is always a rejection and never falls back to signatures;
- an HMAC signature over the raw request body, keyed by the shared
  webhook secret, in the ``<algorithm>=<hex digest>`` form used by GitHub.

The body must be verified exactly as received, before any JSON parsing.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
from typing import Callable, Tuple

import structlog
from pydantic import SecretStr

from sitesync.core.exceptions import AuthenticationError
from sitesync.trigger.models import AuthMethod, AuthResult, Authorized, DeploymentRequest, Unauthorized

logger = structlog.get_logger()


SIGNATURE_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


class Authenticator:
    """Verifies deployment requests against the configured secrets."""

    def __init__(self, webhook_secret: SecretStr, override_key: SecretStr):
        self._webhook_secret = webhook_secret.get_secret_value().encode("utf-8")
        self._override_key = override_key.get_secret_value().encode("utf-8")

    def authenticate(self, request: DeploymentRequest) -> AuthResult:
        if request.has_override:
            return self._check_override(request.override_key)
        return self._check_signature(request.body, request.signature)

    def _check_override(self, supplied: str) -> AuthResult:
        if hmac.compare_digest(supplied.encode("utf-8"), self._override_key):
            logger.info("Request authorized by override key")
            return Authorized(AuthMethod.OVERRIDE)
        return Unauthorized("bad override credential")

    def _check_signature(self, body: bytes, header: str | None) -> AuthResult:
        try:
            digest_factory, supplied = parse_signature(header)
        except AuthenticationError as exc:
            return Unauthorized(str(exc))

        expected = hmac.new(self._webhook_secret, body, digest_factory).digest()
        if not hmac.compare_digest(expected, supplied):
            return Unauthorized("incorrect signature")
        return Authorized(AuthMethod.SIGNATURE)


def parse_signature(header: str | None) -> Tuple[Callable, bytes]:
    """Split an ``<algorithm>=<hex digest>`` header into digest factory and raw digest."""
    if not header:
        raise AuthenticationError("missing signature", code="missing")

    algorithm, sep, hex_digest = header.strip().partition("=")
    if not sep:
        raise AuthenticationError("malformed signature", code="malformed")
    digest_factory = SIGNATURE_ALGORITHMS.get(algorithm.lower())
    if digest_factory is None:
        raise AuthenticationError("unsupported signature algorithm", code="malformed")

    try:
        return digest_factory, binascii.unhexlify(hex_digest)
    except (binascii.Error, ValueError):
        raise AuthenticationError("malformed signature", code="malformed") from None


def sign_body(secret: str, body: bytes, algorithm: str = "sha256") -> str:
    """Produce a signature header value for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, SIGNATURE_ALGORITHMS[algorithm]).hexdigest()
    return f"{algorithm}={digest}"
