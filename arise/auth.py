from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import re
import secrets
import time

SECRET = os.environ.get("ARISE_SECRET", "dev_secret")
PBKDF2_ITERATIONS = 120_000

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
SPECIAL_CHARS = set('!@#$%^&*(),.?":{}|<>')


class RegistrationError(ValueError):
    pass


class InvalidToken(Exception):
    pass


def validate_registration(username: str, password: str) -> None:
    if not username or not password:
        raise RegistrationError("missing fields")
    if not 4 <= len(username) <= 20:
        raise RegistrationError("Username must be 4-20 characters.")
    if not USERNAME_RE.match(username):
        raise RegistrationError("Username can only have letters, numbers, and underscores.")
    if not 8 <= len(password) <= 20:
        raise RegistrationError("Password must be 8-20 characters.")
    checks = (
        any(c.isupper() for c in password),
        any(c.islower() for c in password),
        any(c.isdigit() for c in password),
        any(c in SPECIAL_CHARS for c in password),
    )
    if not all(checks):
        raise RegistrationError("Password needs uppercase, lowercase, number, and special char.")


def hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(body: str) -> str:
    return _b64(hmac.new(SECRET.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).digest())


def _signature_matches(body: str, signature: str) -> bool:
    # compare_digest only accepts ASCII str, so compare the encoded bytes.
    return hmac.compare_digest(_sign(body).encode("ascii"), signature.encode("utf-8"))


def issue_token(user_id: int, username: str) -> str:
    body = _b64(json.dumps({"sub": user_id, "name": username, "iat": int(time.time())}).encode("utf-8"))
    return f"{body}.{_sign(body)}"


def verify_token(token: str) -> dict:
    """Return the token claims, raising InvalidToken when the signature does not match."""
    body, _, signature = (token or "").partition(".")
    if not body or not signature or not _signature_matches(body, signature):
        raise InvalidToken("invalid token")
    try:
        claims = json.loads(_unb64(body))
    except ValueError as exc:
        raise InvalidToken("invalid token") from exc
    if not isinstance(claims, dict) or not isinstance(claims.get("sub"), int):
        raise InvalidToken("invalid token")
    return claims
