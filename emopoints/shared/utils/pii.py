"""PII handling for log lines.

Student identifiers never appear raw in application logs. Every log call
that mentions a student passes the id through hash_pii() first.
"""
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)


# Loaded from PII_HASH_SALT (or Secrets Manager) at startup
_PII_SALT: Optional[str] = None

MIN_SALT_LENGTH = 32


def configure_pii_salt(salt: str) -> None:
    """Configure the salt used when hashing student identifiers.

    Must be called during application startup before anything logs a
    student id.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or shorter than 32 characters
    """
    global _PII_SALT
    if not salt or len(salt) < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def hash_pii(value: str) -> str:
    """Hash a student identifier for logging.

    Args:
        value: Student id, email or other identifier

    Returns:
        64-char hex SHA-256 digest of salt + value

    Raises:
        RuntimeError: If the salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def fingerprint_note(note: Optional[str]) -> Optional[str]:
    """Fingerprint a free-text check-in note without exposing its content.

    Salted like hash_pii() so short notes cannot be looked up in a
    dictionary of common words. The "note:" prefix keeps a note from
    matching the hash of an identical student id.

    Returns:
        64-char hex digest, or None when there is no note

    Raises:
        RuntimeError: If the salt has not been configured
    """
    if not note:
        return None
    return hash_pii(f"note:{note}")
