"""Member key normalization for matching people across identifier schemes."""

from typing import Any

from .models import Identity


def normalize_key(value: Any) -> str:
    """
    Normalize a raw member identifier into a comparable key.

    Emails (anything containing "@") are trimmed and lowercased. Opaque
    account ids are only trimmed. Falsy input yields "".

    Args:
        value: Raw account id or email

    Returns:
        Normalized member key ("" when nothing usable was given)
    """
    if not value:
        return ""
    trimmed = str(value).strip()
    return trimmed.lower() if "@" in trimmed else trimmed


def build_key_set(*values: Any) -> frozenset[str]:
    """Normalize each value and collect the non-empty keys."""
    keys = {normalize_key(value) for value in values}
    keys.discard("")
    return frozenset(keys)


def primary_key(user: Identity | None) -> str:
    """
    Get the canonical key written into new records for this user.

    Prefers the email key and falls back to the account id.
    """
    if user is None:
        return ""
    return normalize_key(user.email) or normalize_key(user.uid)


def keys_for_user(user: Identity | None) -> frozenset[str]:
    """
    Get every key that identifies this user in stored records.

    Older records may carry the account id instead of the email, so both are
    recognized as the same person.
    """
    if user is None:
        return frozenset()
    return build_key_set(user.uid, user.email, primary_key(user))
