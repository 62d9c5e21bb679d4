"""Record validation for admin mutations.

Each known content collection has required fields. Records failing
validation are rejected before any network call, and the errors are
returned so the caller can surface them instead of silently dropping input.
Unknown collections carry no requirements (the CRUD layer is generic).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "casinos": ("name",),
    "bonuses": ("title",),
    "news": ("title",),
    "casino_reviews": ("casino_id", "title", "content"),
    "player_reviews": ("casino_id", "content"),
    "forum_posts": ("title", "author_id"),
    "forum_comments": ("content", "post_id", "author_id"),
    "reports": ("title",),
    "partners": ("name",),
}

# Columns the server owns; clients may not write them.
READ_ONLY_FIELDS: tuple[str, ...] = ("created_at", "updated_at")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_record(
    collection: str,
    data: Mapping[str, Any],
    *,
    partial: bool = False,
) -> tuple[bool, list[str]]:
    """Validate a create payload (or an update patch when ``partial``).

    For a full record every required field must be present and non-blank.
    For a patch only the required fields it touches are checked, so a patch
    cannot blank out a required column.

    Args:
        collection: Target collection name.
        data: Record fields to write.
        partial: ``True`` for update patches.

    Returns:
        A ``(is_valid, errors)`` tuple. ``errors`` is empty when valid.
    """
    errors: list[str] = []

    if not data:
        errors.append("Record data must not be empty")

    for field in READ_ONLY_FIELDS:
        if field in data:
            errors.append(f"Field is read-only: {field}")

    for field in REQUIRED_FIELDS.get(collection, ()):
        if partial and field not in data:
            continue
        if _is_blank(data.get(field)):
            errors.append(f"Missing required field: {field}")

    if errors:
        logger.warning(
            "Rejected %s for %s: errors=%s",
            "patch" if partial else "record",
            collection,
            errors,
        )

    return len(errors) == 0, errors
