"""Sender, date and filename normalisation for archived attachments.

Archived files are named ``MM_LastName_OriginalBaseName.ext``:

* ``MM`` is the two-digit month of the message's ``Date`` header,
* ``LastName`` is derived from the ``From`` header (at most 20 characters),
* ``OriginalBaseName`` is the attachment name without its extension
  (at most 50 characters),

and the whole name never exceeds 100 characters. A component that has to be cut
ends in ``...``. Only ASCII survives.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import parsedate_to_datetime
from typing import Optional

from .utils import utcnow

MAX_SENDER_LENGTH = 20
MAX_BASENAME_LENGTH = 50
MAX_TOTAL_LENGTH = 100

EARLIEST_DATE = datetime(1990, 1, 1, tzinfo=UTC)
FUTURE_WINDOW = timedelta(days=10 * 365)

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_BARE_ADDRESS = re.compile(r"([^\s<>]+@[^\s<>]+)")
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,10}")
_ISO_DAY = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_TRAILING_ZONE_COMMENT = re.compile(r"\s*\([^)]*\)\s*$")


@dataclass(frozen=True)
class SenderInfo:
    email: Optional[str]
    name: Optional[str]
    last_name: Optional[str]


@dataclass(frozen=True)
class ParsedDate:
    date: datetime
    year: str
    month: str


def to_ascii(value: str) -> str:
    """Fold accents (``é`` → ``e``) and drop anything without an ASCII form."""
    return unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")


def sanitize_name(name: str) -> str:
    """Clean a display-name token; keeps spaces."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub(" ", name)
    return re.sub(r"\s+", " ", cleaned).strip()


def sanitize_filename(value: str) -> str:
    """Reduce a filename component to safe ASCII with ``_`` separators."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", to_ascii(value))
    cleaned = re.sub(r"[\s.]+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned.strip("_")


def _decode_header_value(value: str) -> str:
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return value


def parse_sender(header: str | None) -> SenderInfo:
    """Split a ``From`` header into address, display name and last name.

    ``"John Doe" <john@x>`` gives ``Doe``; ``Doe, John <john@x>`` gives ``Doe``;
    a bare ``john.doe@x`` falls back to the final segment of the local part.
    """
    if not header or not header.strip():
        return SenderInfo(email=None, name=None, last_name=None)

    clean = re.sub(r"[\r\n]+", " ", _decode_header_value(header)).strip()
    match = _ANGLE_ADDRESS.search(clean) or _BARE_ADDRESS.search(clean)
    email = match.group(1).strip().lower() if match else None

    if "<" in clean:
        name = clean[: clean.index("<")]
    elif "@" not in clean:
        name = clean
    else:
        name = ""
    name = name.strip().strip("\"'").strip()

    last_name = None
    if name:
        if "," in name:
            last_name = name.split(",")[0].strip()
        else:
            last_name = name.split()[-1]
    if not last_name and email and "@" in email:
        local_part = email.split("@")[0]
        last_name = re.split(r"[._-]", local_part)[-1] or local_part

    last_name = sanitize_name(last_name) if last_name else None
    return SenderInfo(email=email, name=name or None, last_name=last_name or None)


def _to_datetime(value: str) -> Optional[datetime]:
    cleaned = _TRAILING_ZONE_COMMENT.sub("", value.strip())
    try:
        return parsedate_to_datetime(cleaned)
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    match = _ISO_DAY.search(cleaned)
    if match:
        try:
            return datetime(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None
    return None


def parse_email_date(value: str | None, now: datetime | None = None) -> Optional[ParsedDate]:
    """Parse a ``Date`` header into year/month.

    Returns ``None`` for anything unparseable or outside 1990-01-01 .. now + 10 years.
    Year and month are taken from the header's own wall clock.
    """
    if not value or not value.strip():
        return None
    parsed = _to_datetime(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)

    latest = (now or utcnow()) + FUTURE_WINDOW
    if parsed < EARLIEST_DATE or parsed > latest:
        return None
    return ParsedDate(date=parsed, year=f"{parsed.year:04d}", month=f"{parsed.month:02d}")


def split_extension(filename: str) -> tuple[str, str]:
    """Split ``name.ext``; only a short alphanumeric suffix counts as an extension."""
    filename = filename.strip()
    dot = filename.rfind(".")
    if dot > 0 and _EXTENSION.fullmatch(filename[dot:]):
        return filename[:dot], filename[dot:]
    return filename, ""


def truncate(value: str, max_length: int) -> str:
    """Cut ``value`` to ``max_length``; a cut is marked with ``...`` when there is room."""
    if not value or max_length <= 0:
        return ""
    if len(value) <= max_length:
        return value
    if max_length <= 3:
        return value[:max_length]
    return value[: max_length - 3] + "..."


def canonical_filename(
    month: str,
    sender_last_name: str | None,
    original_filename: str,
    *,
    max_sender_length: int = MAX_SENDER_LENGTH,
    max_basename_length: int = MAX_BASENAME_LENGTH,
    max_total_length: int = MAX_TOTAL_LENGTH,
) -> str:
    """Build ``MM_LastName_BaseName.ext`` within ``max_total_length`` characters."""
    sender = truncate(sanitize_filename(sender_last_name or ""), max_sender_length) or "Unknown"
    base, extension = split_extension(original_filename or "")
    base = sanitize_filename(base) or "unnamed"

    prefix = f"{month.zfill(2)}_{sender}_"
    available = max_total_length - len(prefix) - len(extension)
    base = truncate(base, min(max_basename_length, available)) or "unnamed"
    return f"{prefix}{base}{extension}"


def ledger_key(year: str, filename: str) -> str:
    return f"{year}/{filename}"
