"""Normalization and classification of emails, phone numbers, and usernames."""

import re
import secrets
from dataclasses import dataclass
from enum import StrEnum

from fastapi_multichannel_auth.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
USERNAME_PATTERN = re.compile(r"^[a-z0-9_]{3,30}$")

_USERNAME_SUFFIX_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


class IdentifierKind(StrEnum):
    EMAIL = "email"
    PHONE = "phone"
    USERNAME = "username"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    return phone.strip()


def normalize_username(username: str) -> str:
    return username.strip().lower()


def is_email(value: str) -> bool:
    return EMAIL_PATTERN.match(value) is not None


def is_phone(value: str) -> bool:
    """Phone numbers are accepted in E.164 form only."""
    return PHONE_PATTERN.match(value) is not None


def classify_identifier(identifier: str) -> tuple[IdentifierKind, str]:
    """
    Decide whether an identifier is an email, phone number, or username.

    Email wins over phone, phone over username. The returned value is
    normalized for lookups.

    Args:
        identifier: Raw value typed by the user

    Returns:
        Tuple of the identifier kind and its normalized form
    """
    candidate = identifier.strip()
    if is_email(candidate):
        return IdentifierKind.EMAIL, normalize_email(candidate)
    if is_phone(candidate):
        return IdentifierKind.PHONE, normalize_phone(candidate)
    return IdentifierKind.USERNAME, normalize_username(candidate)


def generate_username_from_email(email: str) -> str:
    """
    Derive a username for a federated account, e.g. `jane.doe@x.com` -> `jane_doe_k3f9`.

    Characters outside the username alphabet are replaced with underscores.
    """
    local_part = normalize_email(email).split("@", 1)[0]
    base = re.sub(r"[^a-z0-9_]", "_", local_part)[:25] or "user"
    suffix = "".join(secrets.choice(_USERNAME_SUFFIX_ALPHABET) for _ in range(4))
    return f"{base}_{suffix}"


@dataclass(frozen=True)
class ContactPoints:
    """
    The email/phone pair of an account, at least one of which is present.

    Build instances with `from_raw`, which normalizes and validates both
    values so an empty pair can never be constructed through it.
    """

    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if self.email is None and self.phone is None:
            raise ValidationError("Either email or phone number is required")

    @classmethod
    def from_raw(cls, email: str | None, phone: str | None) -> "ContactPoints":
        """
        Normalize and validate raw contact values.

        Blank strings are treated as absent.

        Raises:
            ValidationError: If both are absent or either is malformed
        """
        normalized_email = normalize_email(email) if email and email.strip() else None
        normalized_phone = normalize_phone(phone) if phone and phone.strip() else None

        if normalized_email is not None and not is_email(normalized_email):
            raise ValidationError("Invalid email address format")
        if normalized_phone is not None and not is_phone(normalized_phone):
            raise ValidationError("Phone number must be in E.164 format, e.g. +15551234567")

        return cls(email=normalized_email, phone=normalized_phone)
