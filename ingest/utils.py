import re
import html
from datetime import datetime, timezone, timedelta
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from dateutil.parser import parse as parse_date

# Abreviations de fuseaux frequentes dans les flux RSS
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
}

NEWS_URL_HINTS = ("news", "rss", "feed")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (as read back from SQLite) are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_feed_date(value: Optional[str]) -> Optional[datetime]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return as_utc(parse_date(value, tzinfos=TZINFOS))
    except (ValueError, OverflowError):
        return None


def truncate_text(text: str, limit: int) -> str:
    text = text or ""
    if len(text) > limit:
        return text[: max(0, limit - 3)] + "..."
    return text


def strip_html_to_text(raw_html: str) -> str:
    raw_html = raw_html or ""
    text = BeautifulSoup(raw_html, "html.parser").get_text("\n")
    text = html.unescape(text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return text


def content_preview(raw_content: str, max_length: int = 200) -> str:
    text = re.sub(r"\s+", " ", strip_html_to_text(raw_content)).strip()
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."


def clean_categories(terms: Iterable[str]) -> List[str]:
    seen = set()
    clean = []
    for term in terms or []:
        term = (str(term) if term is not None else "").strip()
        if not term:
            continue
        key = term.lower()
        if key not in seen:
            seen.add(key)
            clean.append(term)
    return clean


def url_origin(url: str) -> Optional[str]:
    u = urlparse(url)
    if not u.scheme or not u.netloc:
        return None
    return f"{u.scheme}://{u.netloc}"


def referer_for(url: str, referer_hosts: Dict[str, str]) -> Optional[str]:
    """Pick a Referer for the fallback parser.

    Known hostile hosts come from ``referer_hosts`` (substring -> Referer).
    Other URLs that look like feeds get their own origin; the rest none.
    """
    lowered = (url or "").lower()
    for needle, referer in referer_hosts.items():
        if needle.lower() in lowered:
            return referer
    if any(hint in lowered for hint in NEWS_URL_HINTS):
        return url_origin(url)
    return None


def is_http_url(value: Optional[str]) -> bool:
    return bool(value) and str(value).strip().lower().startswith(("http://", "https://"))
