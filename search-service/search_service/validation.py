"""
Request validation - parse raw parameters into a SearchFilter
"""
from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional, Union

from .config import settings
from .domain.models import Backend, SearchFilter, SortMode
from .exceptions import ValidationError

DateInput = Union[str, date, datetime, None]

# Minimum prefix length for suggestion-style calls
MIN_PREFIX_LENGTH = 2


def _parse_enum(enum_cls, value, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field_name} must be one of: {allowed}")


def utcnow() -> datetime:
    """Current time as naive UTC, matching the TIMESTAMP columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime) -> datetime:
    # Post timestamps are stored as naive UTC
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_date(value: DateInput, field_name: str, end_of_day: bool = False) -> Optional[datetime]:
    """Parse a bound; a date-only upper bound covers the whole day"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    text = str(value).strip()
    try:
        if len(text) == 10:
            parsed = date.fromisoformat(text)
            return datetime.combine(parsed, time.max if end_of_day else time.min)
        return _to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 date or datetime")


def clamp_page_size(page_size: Optional[int]) -> int:
    """Clamp to the configured ceiling; never rejects large values"""
    if page_size is None:
        return settings.DEFAULT_PAGE_SIZE
    if page_size < 1:
        raise ValidationError("page_size must be >= 1")
    return min(page_size, settings.MAX_PAGE_SIZE)


def build_filter(
    requester_id: Optional[int],
    query: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    date_from: DateInput = None,
    date_to: DateInput = None,
    friend_id: Optional[int] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    sort_by: Union[str, SortMode, None] = None,
    fuzzy: bool = False,
    backend: Union[str, Backend, None] = None,
) -> SearchFilter:
    """
    Build a canonical SearchFilter from raw request parameters

    Raises:
        ValidationError: If any field is missing or malformed
    """
    if requester_id is None or requester_id < 1:
        raise ValidationError("Valid requester_id is required")
    if friend_id is not None and friend_id < 1:
        raise ValidationError("friend_id must be a positive integer")

    lower = _parse_date(date_from, "date_from")
    upper = _parse_date(date_to, "date_to", end_of_day=True)
    if lower and upper and lower > upper:
        raise ValidationError("date_from must not be after date_to")

    return SearchFilter(
        requester_id=requester_id,
        query_text=query,
        tags=frozenset(tags or ()),
        date_from=lower,
        date_to=upper,
        friend_id=friend_id,
        page=1 if page is None else page,
        page_size=clamp_page_size(page_size),
        sort_mode=_parse_enum(SortMode, sort_by, "sort_by") or SortMode.RELEVANCE,
        fuzzy=fuzzy,
        backend=parse_backend(backend),
    )


def normalize_prefix(prefix: Optional[str]) -> Optional[str]:
    """Return the usable suggestion prefix, or None when it is too short"""
    text = (prefix or "").strip()
    if len(text) < MIN_PREFIX_LENGTH:
        return None
    return text


def parse_backend(value: Union[str, Backend, None]) -> Backend:
    """Parse a backend name, defaulting to the configured backend"""
    return _parse_enum(Backend, value, "backend") or Backend(settings.DEFAULT_BACKEND)


def parse_tags(value: Optional[str]) -> List[str]:
    """Split a comma-separated tag list"""
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]
