"""Formatting for the "X, Y typing…" indicator line."""

from __future__ import annotations

from typing import Callable, List, Mapping, Optional, Sequence

from ..services.settings import DEFAULT_SUMMARY_LIMIT


def format_typing_summary(
    names: Sequence[str],
    *,
    limit: int = DEFAULT_SUMMARY_LIMIT,
) -> str:
    """Return the human-readable indicator for *names*, or ``""`` when nobody types."""

    visible = [str(name).strip() for name in names if name and str(name).strip()]
    if not visible:
        return ""
    limit = max(1, int(limit))
    if len(visible) <= limit:
        return f"{', '.join(visible)} typing…"
    remaining = len(visible) - limit
    noun = "other" if remaining == 1 else "others"
    return f"{', '.join(visible[:limit])} and {remaining} {noun} typing…"


def resolve_display_names(
    participant_ids: Sequence[str],
    directory: Optional[Mapping[str, str]] = None,
    *,
    fallback: Optional[Callable[[str], str]] = None,
) -> List[str]:
    """Map participant ids to display names using *directory* when available."""

    lookup = directory or {}
    resolved: List[str] = []
    for participant_id in participant_ids:
        name = lookup.get(participant_id)
        if not name and fallback is not None:
            name = fallback(participant_id)
        resolved.append(name or participant_id)
    return resolved


__all__ = ["format_typing_summary", "resolve_display_names"]
