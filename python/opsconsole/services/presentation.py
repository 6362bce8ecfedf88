"""Display helpers shared by the routes.

Timestamps are rendered day/month/year with a 24-hour clock. Ordering never
uses these strings; it compares the datetime values.
"""

from datetime import UTC, datetime, tzinfo
from typing import Any

from opsconsole.gateway.types import Document
from opsconsole.services.search_filter import compact_json

DISPLAY_TIME_FORMAT = "%d/%m/%Y %H:%M:%S"
PREVIEW_LENGTH = 100
SYSTEM_FIELD_PREFIX = "_"


def format_display_time(value: datetime, tz: tzinfo = UTC) -> str:
    """Render a timestamp as DD/MM/YYYY HH:MM:SS in the given zone.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(tz).strftime(DISPLAY_TIME_FORMAT)


def split_system_fields(doc: Document) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a document into (user fields, system fields).

    System fields are the reserved "_"-prefixed properties Cosmos DB adds
    (_rid, _etag, _ts, ...). Both mappings are sorted by key.
    """
    user_fields = {}
    system_fields = {}
    for key in sorted(doc):
        if key.startswith(SYSTEM_FIELD_PREFIX):
            system_fields[key] = doc[key]
        else:
            user_fields[key] = doc[key]
    return user_fields, system_fields


def document_preview(doc: Document, length: int = PREVIEW_LENGTH) -> str:
    """First characters of the document's compact JSON, "..." when cut."""
    text = compact_json(doc)
    if len(text) <= length:
        return text
    return text[:length] + "..."
