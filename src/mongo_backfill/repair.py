"""Per-document repair rules for match documents.

A document is compliant once it carries ``isActive`` and an activity marker
(``lastMessage``, or the legacy ``lastMessageAt``). Both functions here are
pure; the wall clock is passed in so patches are reproducible.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping

from mongo_backfill.exceptions import MalformedDocumentError
from mongo_backfill.utils import describe_type, is_timestamp

logger = logging.getLogger(__name__)

IS_ACTIVE = "isActive"
LAST_MESSAGE = "lastMessage"
LAST_MESSAGE_AT = "lastMessageAt"
CREATED_AT = "createdAt"

REPAIR_FIELDS = (IS_ACTIVE, LAST_MESSAGE, LAST_MESSAGE_AT, CREATED_AT)

Clock = Callable[[], datetime]
Patch = Dict[str, Any]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _has_flag(doc: Mapping[str, Any], field: str) -> bool:
    # Only a missing key counts; an explicit false or null is left alone.
    return field in doc


def _has_timestamp(doc: Mapping[str, Any], field: str) -> bool:
    return doc.get(field) is not None


def needs_migration(doc: Mapping[str, Any]) -> bool:
    """Return True when ``doc`` is missing ``isActive`` or any activity marker."""
    if not _has_flag(doc, IS_ACTIVE):
        return True
    return not _has_timestamp(doc, LAST_MESSAGE) and not _has_timestamp(doc, LAST_MESSAGE_AT)


def _timestamp_value(doc: Mapping[str, Any], field: str, document_id: Any) -> Any:
    value = doc[field]
    if not is_timestamp(value):
        raise MalformedDocumentError(
            document_id,
            field,
            f"field '{field}' should be a date, got {describe_type(value)}",
        )
    return value


def compute_patch(doc: Mapping[str, Any], now: Clock = utc_now, document_id: Any = None) -> Patch:
    """Compute the fields to ``$set`` on ``doc`` so it passes ``needs_migration``.

    Returns an empty dict for a compliant document. Existing values are never
    overwritten and ``lastMessageAt`` is never removed.

    Raises:
        MalformedDocumentError: a timestamp that would be copied into
            ``lastMessage`` is not a date.
    """
    if document_id is None:
        document_id = doc.get("_id")

    patch: Patch = {}

    if not _has_flag(doc, IS_ACTIVE):
        patch[IS_ACTIVE] = True

    has_last_message = _has_timestamp(doc, LAST_MESSAGE)
    has_last_message_at = _has_timestamp(doc, LAST_MESSAGE_AT)

    if not has_last_message and not has_last_message_at:
        if _has_timestamp(doc, CREATED_AT):
            patch[LAST_MESSAGE] = _timestamp_value(doc, CREATED_AT, document_id)
        else:
            patch[LAST_MESSAGE] = now()
    elif has_last_message_at and not has_last_message:
        patch[LAST_MESSAGE] = _timestamp_value(doc, LAST_MESSAGE_AT, document_id)

    if patch:
        logger.debug(f"Document {document_id!r} needs fields: {', '.join(sorted(patch))}")
    return patch


def apply_patch(doc: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``patch`` into a copy of ``doc`` the way ``$set`` does."""
    merged = dict(doc)
    merged.update(patch)
    return merged
