"""Heuristic statement classification used when recording observed queries."""
from __future__ import annotations
import re

SELECT, INSERT, UPDATE, DELETE, OTHER = "SELECT", "INSERT", "UPDATE", "DELETE", "OTHER"

_TYPE_PREFIXES = (
    (("SELECT", "WITH", "TABLE", "VALUES"), SELECT),
    (("INSERT",), INSERT),
    (("UPDATE",), UPDATE),
    (("DELETE",), DELETE),
)

_IDENT = r'((?:"[^"]+"|[A-Za-z_][\w$]*)(?:\s*\.\s*(?:"[^"]+"|[A-Za-z_][\w$]*))?)'
_FROM_RE = re.compile(r"\bFROM\s+" + _IDENT, re.IGNORECASE)
_INTO_RE = re.compile(r"^\s*INSERT\s+INTO\s+" + _IDENT, re.IGNORECASE)
_UPDATE_RE = re.compile(r"^\s*UPDATE\s+(?:ONLY\s+)?" + _IDENT, re.IGNORECASE)


def statement_type(text: str) -> str:
    head = (text or "").lstrip().upper()
    for prefixes, kind in _TYPE_PREFIXES:
        if head.startswith(prefixes):
            return kind
    return OTHER


def _bare_name(token: str) -> str:
    # drop schema qualification and identifier quoting
    last = re.split(r"\s*\.\s*", token)[-1]
    return last.strip('"')


def first_table(text: str) -> str | None:
    """Best-effort name of the first table the statement references."""
    if not text:
        return None
    for pattern in (_INTO_RE, _UPDATE_RE, _FROM_RE):
        m = pattern.search(text)
        if m:
            name = _bare_name(m.group(1))
            # `FROM (subquery)` and function calls never match _IDENT; `FROM $1` cannot either
            if name.lower() not in {"select", "lateral"}:
                return name
    return None


def performance_category(mean_ms: float, critical_ms: float = 500.0, warning_ms: float = 300.0) -> tuple[str, str]:
    """Return (category, severity) for a mean execution time."""
    if mean_ms > critical_ms:
        return "Slow Query", "high"
    if mean_ms > warning_ms:
        return "Medium Query", "medium"
    return "Fast Query", "low"


def notification_severity(mean_ms: float) -> str:
    if mean_ms > 5000:
        return "Critical"
    if mean_ms > 1000:
        return "High"
    return "Medium"
