# app/utils/generator.py
import secrets
import string


def _raw_code(length: int = 16, alphabet: str = string.ascii_uppercase + string.digits) -> str:
    """Raw secure random string."""
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def generate_hwid_salt(nbytes: int = 16) -> str:
    """Per-license salt mixed into the hardware fingerprint hash."""
    return secrets.token_hex(nbytes)


def generate_patch_token(length: int = 32) -> str:
    """
    Single-use onboarding token.

    URL-safe (lowercase + digits) so it can sit in a path segment
    of the public /patch-run/{token} script URL without escaping.
    """
    return _raw_code(length, string.ascii_lowercase + string.digits)


def generate_exchange_key() -> str:
    """Opaque key for the one-time ephemeral exchange."""
    return secrets.token_urlsafe(24)
