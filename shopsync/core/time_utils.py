from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """'Сейчас' в UTC, с tzinfo"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Приведение к aware UTC; наивные даты (SQLite) считаем UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 строка -> aware UTC datetime.

    - None / "" -> None
    - суффикс Z допускается
    - наивное значение считается UTC
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(s))


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Сериализация в ISO-8601 UTC; микросекунды сохраняются - по ним сравниваются версии"""
    if value is None:
        return None
    return as_utc(value).isoformat()
