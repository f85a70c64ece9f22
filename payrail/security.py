"""
Security utilities: password hashing, JWT tokens, Fernet encryption and
webhook authenticity checks.

This module centralizes all cryptographic operations so they're easy to
audit and update. Four concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - passlib's CryptContext handles Argon2id hashing and verification

2. JWT TOKENS
   - After login, the user receives a signed JWT containing their user ID
   - Signed with SECRET_KEY using HS256; expires after
     ACCESS_TOKEN_EXPIRE_MINUTES

3. FERNET ENCRYPTION
   - Provider consumer secrets are encrypted at rest in provider_configs
   - The key comes from CONFIG_ENCRYPTION_KEY, never hardcoded

4. WEBHOOK AUTHENTICITY
   - Each provider declares a scheme in the registry: shared-secret header
     match, or HMAC over the raw request body
   - All comparisons are constant-time (hmac.compare_digest)
   - The verifier only ever answers True/False. Callers turn False into a
     SignatureInvalidError without revealing which check failed
"""

import hashlib
import hmac
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet
from jose import jwt
from passlib.context import CryptContext

from payrail.config import settings
from payrail.providers.registry import Provider, SignatureScheme, get_capability


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 3. Fernet Encryption (provider secrets at rest)
# ---------------------------------------------------------------------------

_fernet = Fernet(settings.CONFIG_ENCRYPTION_KEY.encode())


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a string for storage in a LargeBinary column."""
    return _fernet.encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """
    Decrypt a Fernet-encrypted value back to plaintext.

    Raises:
        cryptography.fernet.InvalidToken: If the data is corrupted or
            the encryption key doesn't match.
    """
    return _fernet.decrypt(ciphertext).decode()


# ---------------------------------------------------------------------------
# 4. Webhook authenticity
# ---------------------------------------------------------------------------


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # Starlette headers are case-insensitive already; plain dicts are not
    target = name.lower()
    for key, value in headers.items():
        if key.lower() == target:
            return value
    return None


def verify_shared_secret(presented: str | None, secret: str | None) -> bool:
    """True only when both values are non-empty and equal."""
    if not presented or not secret:
        return False
    return hmac.compare_digest(presented.encode(), secret.encode())


def compute_hmac_signature(raw_body: bytes, secret: str, digest: str) -> str:
    return hmac.new(secret.encode(), raw_body, getattr(hashlib, digest)).hexdigest()


def verify_hmac_signature(
    raw_body: bytes,
    presented: str | None,
    secret: str | None,
    digest: str,
) -> bool:
    """
    True when `presented` is the hex HMAC of `raw_body` under `secret`.

    The HMAC is computed over the exact bytes received. Re-serialized JSON
    would not match what the provider signed.
    """
    if not presented or not secret:
        return False
    expected = compute_hmac_signature(raw_body, secret, digest)
    return hmac.compare_digest(presented.strip().lower().encode(), expected.encode())


def verify_with_scheme(
    scheme: SignatureScheme,
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
) -> bool:
    presented = _header(headers, scheme.header)
    if scheme.kind == "shared_secret":
        return verify_shared_secret(presented, secret)
    if scheme.kind == "hmac" and scheme.digest:
        return verify_hmac_signature(raw_body, presented, secret, scheme.digest)
    return False


def verify_notification(
    provider: Provider | str,
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
) -> bool:
    """
    Authenticate an inbound provider notification.

    Unknown providers, missing headers, empty secrets and mismatches all
    return False.
    """
    capability = get_capability(provider)
    if capability is None:
        return False
    return verify_with_scheme(capability.signature, raw_body, headers, secret)


def webhook_secret_for(provider: Provider | str) -> str:
    """Configured inbound secret for a provider; empty when unset."""
    secrets = {
        Provider.PAYSTACK: settings.PAYSTACK_WEBHOOK_SECRET,
        Provider.PESAPAL: settings.PESAPAL_IPN_SECRET,
        Provider.PESEPAY: settings.PESEPAY_WEBHOOK_SECRET,
        Provider.MTN_MOMO: settings.MTN_MOMO_CALLBACK_SECRET,
        Provider.PAYMENTOLOGY: settings.PAYMENTOLOGY_WEBHOOK_SECRET,
    }
    try:
        return secrets.get(Provider(provider), "")
    except ValueError:
        return ""
