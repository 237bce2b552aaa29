"""
Value Transforms

Functions that turn raw entity values into the strings written into a
merged agreement. Each transform is registered by name so the merge engine
can pick one per token.

None and unparseable input never raise: amounts fall back to zero and dates
fall back to an empty string.
"""

import logging
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Type alias for transform functions
TransformFunc = Callable[[Any], str]

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%m/%d/%Y", "%m-%d-%Y"]


def parse_amount(value: Any) -> Decimal:
    """
    Parse an amount from a number or a formatted string.

    Returns Decimal('0') for None, empty or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return Decimal('0')

    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))

    cleaned = re.sub(r'[^0-9.\-]', '', str(value))
    if not cleaned:
        return Decimal('0')

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        logger.warning(f"Could not parse amount: {value}")
        return Decimal('0')


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date from a date, datetime or string.

    Returns None when the value is empty or not a recognisable date.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        # Drop a trailing UTC marker or offset from ISO timestamps
        text = re.sub(r'(Z|[+-]\d{2}:\d{2})$', '', text)
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

    logger.warning(f"Could not parse date: {value}")
    return None


def transform_currency(value: Any) -> str:
    """
    Format a number as US currency.

    Examples:
        1500 -> "$1,500.00"
        "1234.5" -> "$1,234.50"
        None -> "$0.00"
    """
    amount = parse_amount(value)
    sign = '-' if amount < 0 else ''
    return f"{sign}${abs(amount):,.2f}"


def transform_date(value: Any) -> str:
    """
    Format a date as "Month D, YYYY".

    Examples:
        "2024-03-01" -> "March 1, 2024"
        date(2026, 1, 15) -> "January 15, 2026"
        "not a date" -> ""
    """
    parsed = parse_date(value)
    if parsed is None:
        return ""
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def transform_address(value: Any) -> str:
    """Convert newlines in a stored address to HTML line breaks."""
    if not value:
        return ""
    return re.sub(r'\r?\n', '<br>', str(value))


def transform_phone(value: Any) -> str:
    """
    Format a phone number in US format when it has 10 digits.

    Examples:
        "7137254459" -> "(713) 725-4459"
        "+94 77 123 4567" -> "+94 77 123 4567"
    """
    if value is None:
        return ""

    phone_str = str(value)
    digits = re.sub(r'\D', '', phone_str)

    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"

    return phone_str


def transform_none(value: Any) -> str:
    """No transformation - just convert to string."""
    if value is None:
        return ""
    return str(value)


# Registry of available transforms
TRANSFORMS: Dict[str, TransformFunc] = {
    'currency': transform_currency,
    'date': transform_date,
    'address': transform_address,
    'phone': transform_phone,
    'none': transform_none,
}


def get_transform(name: str) -> Optional[TransformFunc]:
    """Get a transform function by name."""
    return TRANSFORMS.get(name)


def apply_transform(value: Any, transform_name: Optional[str]) -> str:
    """
    Apply a named transform to a value.

    If transform_name is None or not found, returns str(value).
    """
    if not transform_name:
        return transform_none(value)

    transform_func = get_transform(transform_name)
    if transform_func:
        return transform_func(value)

    logger.warning(f"Unknown transform: {transform_name}")
    return transform_none(value)
