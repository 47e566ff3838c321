"""Centralized configuration for the feedkeeper ingestion service."""

import os
import json
import logging
from datetime import time as dtime
from typing import Dict, List
from zoneinfo import ZoneInfo

log = logging.getLogger("feedkeeper.config")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_json(name: str, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        log.error("Variable %s invalide (JSON attendu): %s", name, e)
        return default
    if not isinstance(value, type(default)):
        log.error("Variable %s: type %s attendu.", name, type(default).__name__)
        return default
    return value


# =========================
# Storage
# =========================
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///feedkeeper.db")

# =========================
# Scheduler
# =========================
SCHEDULER_ENABLED: bool = _env_bool("ENABLE_ARTICLE_SCHEDULER")
FETCH_INTERVAL_MINUTES: float = float(os.getenv("FETCH_INTERVAL_MINUTES", "60"))
FETCH_ON_START: bool = _env_bool("FETCH_ON_START")
CLEANUP_HOUR: int = int(os.getenv("CLEANUP_HOUR", "2"))
CLEANUP_MINUTE: int = int(os.getenv("CLEANUP_MINUTE", "0"))
TZ: ZoneInfo = ZoneInfo(os.getenv("SCHEDULER_TIMEZONE") or os.getenv("TZ") or "America/New_York")
CLEANUP_TIME: dtime = dtime(hour=CLEANUP_HOUR, minute=CLEANUP_MINUTE, tzinfo=TZ)

# =========================
# Retention
# =========================
ARTICLE_RETENTION_DAYS: int = int(os.getenv("ARTICLE_RETENTION_DAYS", "30"))
ARTICLES_PER_FEED_MAX: int = int(os.getenv("ARTICLES_PER_FEED_MAX", "100"))

# =========================
# Fetching
# =========================
PRIMARY_TIMEOUT: float = float(os.getenv("PRIMARY_TIMEOUT", "10"))
FALLBACK_TIMEOUT: float = float(os.getenv("FALLBACK_TIMEOUT", "15"))
FALLBACK_RETRY_DELAY: float = float(os.getenv("FALLBACK_RETRY_DELAY", "1.0"))
PRIMARY_USER_AGENT: str = os.getenv("PRIMARY_USER_AGENT", "RSS Feed Summarizer/1.0")

DEFAULT_USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "RSS Feed Reader Bot/1.0",
    "Feedfetcher-Google; (+http://www.google.com/feedfetcher.html)",
]
FALLBACK_USER_AGENTS: List[str] = _env_json("FALLBACK_USER_AGENTS", DEFAULT_USER_AGENTS)

# Sous-chaine de l'URL -> Referer envoye par le parser de secours
DEFAULT_REFERER_HOSTS: Dict[str, str] = {
    "politico": "https://www.politico.com/",
    "bbc": "https://www.bbc.com/",
}
REFERER_HOSTS: Dict[str, str] = _env_json("REFERER_HOSTS", DEFAULT_REFERER_HOSTS)

# Echecs consideres comme temporaires lors de la validation d'un flux
DEFAULT_TRANSIENT_ERROR_SIGNATURES: List[str] = [
    "Response code 403",
    "Status code 403",
    "Response code 429",
    "Status code 429",
    "Response code 503",
    "Status code 503",
    "ETIMEDOUT",
    "ENOTFOUND",
    "ECONNREFUSED",
    "socket hang up",
    "timeout",
    "Request timeout",
    "getaddrinfo ENOTFOUND",
    "Cannot connect to host",
    "Name or service not known",
    "Temporary failure in name resolution",
    "Connection refused",
    "Connection reset",
    "Server disconnected",
    "Non-whitespace before first tag",
    "Invalid character in entity name",
    "Unexpected end of input",
    "not well-formed",
    "undefined entity",
    "no element found",
    "mismatched tag",
]
TRANSIENT_ERROR_SIGNATURES: List[str] = _env_json(
    "TRANSIENT_ERROR_SIGNATURES", DEFAULT_TRANSIENT_ERROR_SIGNATURES
)

# =========================
# Monitoring / logging
# =========================
FAILURE_ALERT_THRESHOLD: int = int(os.getenv("FAILURE_ALERT_THRESHOLD", "5"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def validate_config() -> None:
    """Validate numeric settings. Call at startup."""
    problems = []
    if FETCH_INTERVAL_MINUTES <= 0:
        problems.append("FETCH_INTERVAL_MINUTES doit etre > 0")
    if ARTICLE_RETENTION_DAYS <= 0:
        problems.append("ARTICLE_RETENTION_DAYS doit etre > 0")
    if ARTICLES_PER_FEED_MAX <= 0:
        problems.append("ARTICLES_PER_FEED_MAX doit etre > 0")
    if not FALLBACK_USER_AGENTS:
        problems.append("FALLBACK_USER_AGENTS ne peut pas etre vide")
    if problems:
        raise ValueError(f"Configuration invalide: {'; '.join(problems)}")
    if FALLBACK_RETRY_DELAY <= 0:
        log.warning("FALLBACK_RETRY_DELAY=%s: aucune pause entre les User-Agents.", FALLBACK_RETRY_DELAY)
