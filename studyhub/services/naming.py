"""Helpers deriving conversation context keys and channel names."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "CHANNEL_PREFIX",
    "TYPING_EVENT",
    "channel_name_for",
    "direct_context_key",
    "group_context_key",
    "parse_context_key",
]


CHANNEL_PREFIX = "typing"
TYPING_EVENT = "typing"

_DIRECT_PREFIX = "direct"
_GROUP_PREFIX = "group"


def _clean_identifier(value: str, *, label: str) -> str:
    cleaned = str(value).strip() if value is not None else ""
    if not cleaned:
        raise ValueError(f"{label} must not be empty")
    if ":" in cleaned:
        raise ValueError(f"{label} must not contain ':'")
    return cleaned


def direct_context_key(first_participant: str, second_participant: str) -> str:
    """Return the shared key of a 1:1 chat.

    Both participants sort the pair before joining, so each side computes the
    same key without coordination.
    """

    first = _clean_identifier(first_participant, label="participant id")
    second = _clean_identifier(second_participant, label="participant id")
    low, high = sorted((first, second))
    return f"{_DIRECT_PREFIX}:{low}:{high}"


def group_context_key(group_id: str) -> str:
    """Return the key of a group chat."""

    return f"{_GROUP_PREFIX}:{_clean_identifier(group_id, label='group id')}"


def parse_context_key(context_key: str) -> Optional[str]:
    """Return ``"direct"`` or ``"group"`` for a well-formed key, ``None`` otherwise."""

    if not context_key:
        return None
    prefix, _, remainder = context_key.partition(":")
    if not remainder:
        return None
    if prefix == _DIRECT_PREFIX and remainder.count(":") == 1 and all(remainder.split(":")):
        return "direct"
    if prefix == _GROUP_PREFIX and ":" not in remainder:
        return "group"
    return None


def channel_name_for(context_key: str) -> str:
    """Return the pub/sub channel name carrying typing events for *context_key*."""

    key = str(context_key).strip() if context_key is not None else ""
    if not key:
        raise ValueError("context key must not be empty")
    return f"{CHANNEL_PREFIX}:{key}"
