"""Canonical identity for observed statements.

Both the collection engine and the alert engine resolve QueryRecords through
QueryIdentity so an operator-entered statement and the text reported by
pg_stat_statements land on the same record whenever they differ only in
surrounding/internal whitespace or a trailing semicolon. Literal values are
not rewritten: `WHERE id = 1` and `WHERE id = 2` remain distinct records
unless the extension has already normalised them to `$1`.
"""
from __future__ import annotations
import hashlib
import re
from dataclasses import dataclass

_WS = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    cleaned = (text or "").strip()
    while cleaned.endswith(";"):
        cleaned = cleaned[:-1].rstrip()
    return _WS.sub(" ", cleaned)


@dataclass(frozen=True)
class QueryIdentity:
    normalized: str
    digest: str

    @classmethod
    def of(cls, text: str) -> "QueryIdentity":
        normalized = normalize_query(text)
        return cls(normalized=normalized, digest=hashlib.sha256(normalized.encode("utf-8")).hexdigest())

    def __str__(self) -> str:  # pragma: no cover - debugging aid
        return self.digest[:12]
