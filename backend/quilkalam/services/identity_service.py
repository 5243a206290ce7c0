"""
Quilkalam Backend — Identity Service
=====================================

What:  Password hashing and bearer-token issue/verification.
How:   Passwords are hashed with werkzeug's salted PBKDF2/scrypt helpers.
       Tokens are Fernet tokens (AES + HMAC, timestamped) whose payload is
       `{"userId": ..., "phoneNumber": ...}`. The Fernet key is derived from
       TOKEN_SECRET with SHA-256, so any secret string works as a key.
       Expiry is enforced at decrypt time with `ttl=`.
Who:   UserService (register/login) and dependencies.get_current_identity.

The rest of the service only ever sees an `Identity`; nothing outside this
module inspects token contents.
"""

import base64
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from werkzeug.security import check_password_hash, generate_password_hash

from quilkalam.config import settings
from quilkalam.exceptions import UnauthenticatedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The caller, as established by a verified bearer token."""
    user_id: uuid.UUID
    phone_number: str


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class IdentityService:
    """
    Issues and verifies bearer tokens.

    Args:
        secret:   Overrides settings.token_secret (tests use a fixed one).
        ttl_days: Overrides settings.token_ttl_days.
    """

    def __init__(self, secret: Optional[str] = None, ttl_days: Optional[int] = None):
        self._fernet = Fernet(_derive_fernet_key(secret or settings.token_secret))
        self.ttl_seconds = (ttl_days or settings.token_ttl_days) * 24 * 60 * 60

    # ── Passwords ─────────────────────────────────────────────────────────

    def hash_password(self, password: str) -> str:
        return generate_password_hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        return check_password_hash(password_hash, password)

    # ── Tokens ────────────────────────────────────────────────────────────

    def issue_token(self, identity: Identity) -> str:
        document = {"userId": str(identity.user_id), "phoneNumber": identity.phone_number}
        encoded = json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(encoded).decode("ascii")

    def verify_token(self, token: str) -> Identity:
        """
        Decode a bearer token.

        Raises:
            UnauthenticatedError: Token is malformed, tampered with, signed
                with another secret, or older than the TTL.
        """
        try:
            raw = self._fernet.decrypt(token.encode("ascii"), ttl=self.ttl_seconds)
        except (InvalidToken, UnicodeEncodeError):
            raise UnauthenticatedError("Invalid or expired token")

        try:
            document = json.loads(raw)
            return Identity(
                user_id=uuid.UUID(document["userId"]),
                phone_number=document["phoneNumber"],
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Token decrypted but payload is malformed")
            raise UnauthenticatedError("Invalid or expired token")


# ── Singleton Instance ────────────────────────────────────────────────────
identity_service = IdentityService()
