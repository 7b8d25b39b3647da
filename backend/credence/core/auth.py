"""Credential hashing helpers shared by the identity and code flows.

Pipeline:
- hash_password / verify_password: bcrypt cost 12
- DUMMY_HASH: Timing-safe constant for user enumeration defense
- hash_secret: SHA-256 for verification codes (stored hash, never plaintext)
- check_password_breached: HIBP k-anonymity check (async, network)
"""

import hashlib
import logging

import bcrypt
import httpx

logger = logging.getLogger(__name__)

# bcrypt cost factor for password hashing
BCRYPT_ROUNDS = 12

# bcrypt only consumes the first 72 bytes; newer releases reject longer input
_BCRYPT_MAX_BYTES = 72

# HIBP API timeout in seconds
_HIBP_TIMEOUT = 5.0

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def _password_bytes(password: str) -> bytes:
    return password.encode()[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain-text password.
        rounds: bcrypt cost factor.

    Returns:
        bcrypt hash as a string.
    """
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored hash.

    When there is no stored hash (unknown user or federated-only account)
    the comparison still runs against DUMMY_HASH so the response time does
    not reveal which case occurred.

    Args:
        password: Plain-text password supplied by the caller.
        password_hash: Stored bcrypt hash, or None.

    Returns:
        True only if a real hash exists and matches.
    """
    if password_hash is None:
        bcrypt.checkpw(_password_bytes(password), DUMMY_HASH)
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode())
    except ValueError:
        # Corrupt stored hash
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


def hash_secret(secret: str) -> str:
    """Hash a verification code for storage and lookup.

    Args:
        secret: Plain code.

    Returns:
        SHA-256 hex digest.
    """
    return hashlib.sha256(secret.encode()).hexdigest()


async def _fetch_hibp_range(prefix: str) -> str | None:
    """Fetch HIBP range response for a SHA-1 prefix.

    Uses k-anonymity: only the first 5 chars of the SHA-1 hash are sent.
    The API returns all suffixes matching that prefix, and we check locally.

    Args:
        prefix: First 5 chars of SHA-1 hex digest (uppercase).

    Returns:
        Response text or None on error.
    """
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"https://api.pwnedpasswords.com/range/{prefix}",
                headers={"Add-Padding": "true"},
                timeout=_HIBP_TIMEOUT,
            )
            response.raise_for_status()
            return response.text
    except httpx.HTTPError:
        logger.warning("HIBP API request failed")
        return None


async def check_password_breached(password: str) -> bool:
    """Check if password appears in the HIBP breach database.

    Only the first 5 characters of the SHA-1 hash are sent to HIBP.
    The full hash never leaves the server.

    Fails open: if HIBP is unavailable, allows the password. This prevents
    HIBP outages from blocking registration.

    Args:
        password: Plain-text password to check.

    Returns:
        True if password found in breach database, False otherwise.
    """
    sha1 = hashlib.sha1(password.encode()).hexdigest().upper()  # nosec B324
    prefix = sha1[:5]
    suffix = sha1[5:]

    text = await _fetch_hibp_range(prefix)
    if text is None:
        return False

    for line in text.splitlines():
        parts = line.split(":")
        if len(parts) == 2 and parts[0] == suffix:
            # Padding entries carry a zero count
            return parts[1].strip() != "0"

    return False
