"""Conversion between stored records and the portable backup document."""
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from . import schemas
from .errors import MalformedDocument
from .models import Category, Item, Transaction, User

SNAPSHOT_KINDS = ("categories", "users", "items")


@dataclass
class CandidateSnapshot:
    """Record collections pulled out of an inbound document.

    The values are kept exactly as they were found so the reconciler can
    report shape problems; nothing here has been validated yet.
    """

    categories: Any = field(default_factory=list)
    users: Any = field(default_factory=list)
    items: Any = field(default_factory=list)


def encode(
    categories: Iterable[Category],
    users: Iterable[User],
    items: Iterable[Item],
    transactions: Iterable[Transaction],
    *,
    exported_at: datetime | None = None,
) -> schemas.BackupDocument:
    return schemas.BackupDocument(
        items=[schemas.ItemOut.model_validate(item) for item in items],
        categories=[schemas.CategoryOut.model_validate(category) for category in categories],
        users=[schemas.UserOut.model_validate(user) for user in users],
        transactions=[
            schemas.TransactionOut.model_validate(transaction) for transaction in transactions
        ],
        export_date=exported_at or datetime.now(timezone.utc),
    )


def _load(raw: bytes | str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedDocument("Backup file must be UTF-8 encoded JSON") from exc
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise MalformedDocument() from exc
    if not isinstance(raw, Mapping):
        raise MalformedDocument("Backup document must be a JSON object")
    return raw


def decode(raw: bytes | str | Mapping[str, Any]) -> CandidateSnapshot:
    """Extract categories, users and items from ``raw``.

    Each key is looked up at the top level first and then under a ``data``
    wrapper; a key found in neither place becomes an empty list.
    """

    document = _load(raw)
    nested = document.get("data")
    if not isinstance(nested, Mapping):
        nested = {}

    values: dict[str, Any] = {}
    for kind in SNAPSHOT_KINDS:
        value = document.get(kind)
        if value is None:
            value = nested.get(kind)
        values[kind] = [] if value is None else value
    return CandidateSnapshot(**values)


__all__ = ["CandidateSnapshot", "SNAPSHOT_KINDS", "decode", "encode"]
