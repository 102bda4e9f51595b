"""Router account credential generation."""
from __future__ import annotations

import re
import secrets
import string
from datetime import datetime
from typing import NamedTuple

SECRET_ALPHABET = string.ascii_lowercase + string.digits
SECRET_LENGTH = 12
_NAME_CLEANUP = re.compile(r"[^a-z0-9]+")


class AccountCredentials(NamedTuple):
    account_name: str
    account_secret: str


def normalize_account_name(display_name: str) -> str:
    """Lowercase, drop whitespace and symbols; fall back to ``user``."""

    return _NAME_CLEANUP.sub("", display_name.lower()) or "user"


def generate_credentials(display_name: str, issued_at: datetime) -> AccountCredentials:
    """Allocate a unique account name and a random secret for a subscription.

    The name combines the normalized display name with the issue time in
    milliseconds, e.g. ``janedoe-1700000000000``.
    """

    token = int(issued_at.timestamp() * 1000)
    name = f"{normalize_account_name(display_name)}-{token}"
    secret = "".join(secrets.choice(SECRET_ALPHABET) for _ in range(SECRET_LENGTH))
    return AccountCredentials(account_name=name, account_secret=secret)


__all__ = ["AccountCredentials", "generate_credentials", "normalize_account_name"]
