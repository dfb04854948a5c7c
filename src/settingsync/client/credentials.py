"""Provider secrets in the OS keyring.

Passwords and bearer tokens can be kept out of config.json. They are stored
under the service ``settingsync`` with the key ``<provider>:<username>`` for
Basic credentials or ``<provider>:token`` for a Bearer token.

A missing or failing keyring backend is never fatal: storing reports False
and lookups return None, so the secret simply stays in (or must be added to)
the config file.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "settingsync"
TOKEN_USER = "token"


def secret_key(provider: str, username: str | None) -> str:
    """Build the keyring key for a provider credential."""
    return f"{provider}:{username or TOKEN_USER}"


def store_secret(provider: str, username: str | None, secret: str) -> bool:
    """Store a password (username set) or token (username None).

    Returns:
        True if the keyring accepted the secret.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, secret_key(provider, username), secret)
    except KeyringError as e:
        logger.warning("Keyring unavailable, secret for %s not stored: %s", provider, e)
        return False
    return True


def get_secret(provider: str, username: str | None) -> str | None:
    """Look up a stored password or token."""
    try:
        return keyring.get_password(KEYRING_SERVICE, secret_key(provider, username))
    except KeyringError as e:
        logger.debug("Keyring lookup for %s failed: %s", provider, e)
        return None


def delete_secret(provider: str, username: str | None) -> None:
    """Remove a stored secret (silently ignores missing entries)."""
    with contextlib.suppress(KeyringError):
        keyring.delete_password(KEYRING_SERVICE, secret_key(provider, username))


def fill_secret(data: dict[str, Any]) -> dict[str, Any]:
    """Complete a raw remote provider dict with its secret from the keyring.

    A provider with a username gets its password filled in; one without a
    username is token-authenticated and gets its token filled in. Values
    already present are kept.
    """
    if data.get("kind", "remote") != "remote":
        return data
    name = data.get("name", "")
    username = data.get("username")
    filled = dict(data)
    if username and not filled.get("password"):
        filled["password"] = get_secret(name, username)
    elif not username and not filled.get("token"):
        filled["token"] = get_secret(name, None)
    return filled
