"""Security primitives: OTP codes, opaque tokens, and password hashing."""

import asyncio
import base64
import secrets

import bcrypt


def generate_otp(length: int, developer_mode: bool) -> str:
    """
    Generate a cryptographically secure OTP code.

    In developer mode, returns a code consisting of zeros for easy testing.

    Args:
        length: Length of the OTP code (typically 4-8 digits)
        developer_mode: If True, return test code of all zeros

    Returns:
        OTP code as a string

    Example:
        >>> generate_otp(6, False)
        '482913'
        >>> generate_otp(6, True)
        '000000'
    """
    if developer_mode:
        return "0" * length

    # Use secrets.randbelow for cryptographically secure random numbers
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def generate_secure_token(num_bytes: int = 32) -> str:
    """
    Generate an opaque URL-safe token for pending-auth and reset handles.

    Args:
        num_bytes: Amount of random data before encoding

    Returns:
        URL-safe base64 string
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii")


def codes_match(stored_code: str, input_code: str) -> bool:
    """Constant-time comparison of two OTP codes."""
    return secrets.compare_digest(stored_code.encode(), input_code.encode())


def hash_password_sync(password: str, cost: int) -> str:
    """
    Hash a password with bcrypt.

    Args:
        password: Plain-text password
        cost: bcrypt work factor (log2 rounds)

    Returns:
        bcrypt hash as a string
    """
    salt = bcrypt.gensalt(rounds=cost)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password_sync(password: str, password_hash: str) -> bool:
    """
    Check a password against a bcrypt hash.

    bcrypt compares digests in constant time. A malformed stored hash counts
    as a mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


async def hash_password(password: str, cost: int) -> str:
    """Hash a password without blocking the event loop."""
    return await asyncio.to_thread(hash_password_sync, password, cost)


async def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password without blocking the event loop."""
    return await asyncio.to_thread(verify_password_sync, password, password_hash)
