"""Slug, hash and timestamp helpers shared by the listing pipeline."""
import hashlib
import json
import re
import unicodedata
from datetime import date, datetime, time, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

# Characters NFKD does not decompose into ASCII
_TRANSLITERATIONS = {
    'ß': 'ss',
    'æ': 'ae',
    'ø': 'o',
    'œ': 'oe',
    'ð': 'd',
    'þ': 'th',
    'ł': 'l',
}


def slugify(value: str) -> str:
    """
    Convert text into a URL-safe slug.

    Lowercases, folds accented characters to ASCII, replaces every run of
    non-alphanumeric characters with a single hyphen and trims hyphens from
    both ends.

    Args:
        value: Text to slugify

    Returns:
        Slug string (may be empty if the input has no usable characters)
    """
    text = (value or '').lower().strip()
    text = ''.join(_TRANSLITERATIONS.get(ch, ch) for ch in text)
    text = unicodedata.normalize('NFKD', text)
    text = text.encode('ascii', 'ignore').decode('ascii')
    text = re.sub(r'[^a-z0-9]+', '-', text)
    return text.strip('-')


def generate_sync_hash(data: Any) -> str:
    """
    Generate a SHA256 fingerprint for a JSON-serializable structure.

    Keys are sorted so that the same content always yields the same hash.

    Args:
        data: Structure to fingerprint

    Returns:
        64 character hex digest
    """
    composite = json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def get_timezone(name: Optional[str]):
    """Resolve an IANA timezone name, falling back to UTC."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def parse_datetime(value: Any, tz_name: Optional[str] = None,
                   end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive timestamps are interpreted in ``tz_name`` (UTC when unknown).
    Date-only values resolve to the start of that day, or to the last
    instant of it when ``end_of_day`` is set.

    Args:
        value: ISO string, datetime or date
        tz_name: IANA timezone used for naive values
        end_of_day: Resolve date-only values to 23:59:59.999

    Returns:
        Aware datetime in UTC, or None if the value is empty or unparseable
    """
    if value is None or value == '':
        return None

    tz = get_timezone(tz_name)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        boundary = time(23, 59, 59, 999000) if end_of_day else time(0, 0)
        parsed = datetime.combine(value, boundary)
    else:
        text = str(value).strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            if len(text) == 10:
                day = date.fromisoformat(text)
                boundary = time(23, 59, 59, 999000) if end_of_day else time(0, 0)
                parsed = datetime.combine(day, boundary)
            else:
                parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as UTC ISO 8601 with millisecond precision.

    Example: ``2025-06-01T20:00:00.000Z``
    """
    if value is None:
        return None
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime('%Y-%m-%dT%H:%M:%S.') + f'{utc_value.microsecond // 1000:03d}Z'


def html_to_text(html: Optional[str]) -> str:
    """Strip markup from an HTML fragment and collapse whitespace."""
    if not html:
        return ''
    text = BeautifulSoup(html, 'html.parser').get_text(' ', strip=True)
    return re.sub(r'\s+', ' ', text).strip()
