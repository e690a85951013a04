# Helpers for Collectibles application

import uuid
from datetime import datetime, date
from decimal import Decimal, InvalidOperation


def generate_uid():
    """
    Generate unique record ID using UUID + timestamp.
    """
    uuid_part = uuid.uuid4().hex[:6]
    timestamp_part = str(int(datetime.now().timestamp()))[-4:]
    return f"{uuid_part}{timestamp_part}"


def empty_to_none(value):
    """Convert empty string or whitespace-only string to None.

    This ensures we store NULL in the database instead of empty strings,
    maintaining data integrity and query consistency.

    Args:
        value: Any value, typically a string from form input

    Returns:
        None if value is empty/whitespace/None, otherwise the value
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def validate_date_format(date_str: str) -> bool:
    """
    Validate date string is in YYYY-MM-DD format.

    Returns True if valid, False otherwise.
    """
    try:
        datetime.strptime(date_str, '%Y-%m-%d')
        return True
    except (ValueError, TypeError):
        return False


def parse_date(value):
    """
    Coerce a date, datetime or YYYY-MM-DD string to a date.

    Returns None for empty values. Raises ValueError on anything else.
    """
    value = empty_to_none(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and validate_date_format(value.strip()):
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    raise ValueError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")


def parse_datetime(value):
    """Coerce an ISO timestamp string (or datetime) to a datetime."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def to_decimal(value) -> Decimal:
    """
    Convert a form value to a Decimal amount.

    Goes through str() so floats like 12.5 don't carry binary noise.
    """
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")


def media_type_from_mime(mime_type: str) -> str:
    """Map a MIME type to a media file type ('image', 'video', 'audio' or 'document')."""
    mime_type = (mime_type or '').lower()
    for prefix in ('image', 'video', 'audio'):
        if mime_type.startswith(f"{prefix}/"):
            return prefix
    return 'document'
