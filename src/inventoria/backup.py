"""Full-database backup export and validated, referentially consistent import.

An import runs in two phases. The candidate snapshot is validated
completely without touching the store; only then is the store cleared and
rebuilt, categories first so item category references can be remapped to
the identifiers the store assigns. Each write is committed on its own, so
a failure part-way through leaves the earlier records in place. On every
exit path, success or failure, a default administrator is guaranteed to
exist.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .config import Settings
from .errors import (
    DuplicateUsername,
    ExportReadFailed,
    ImportWriteFailed,
    IncompleteRecord,
    InvalidFormat,
    MissingCategories,
    NoUsers,
)
from .snapshot import SNAPSHOT_KINDS, CandidateSnapshot, encode

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "category": ("name",),
    "user": ("username", "fullName", "role"),
    "item": ("name", "sku", "unitPrice"),
}

ITEM_DEFAULTS: dict[str, Any] = {
    "quantity": 0,
    "rentedCount": 0,
    "brokenCount": 0,
    "minStockLevel": 5,
    "status": "active",
    "rentable": True,
    "expirable": False,
}

FALLBACK_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d")

PRICE_STEP = Decimal("0.01")

_datetime_adapter = TypeAdapter(datetime)


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value is None or value is False


def _source_key(value: Any) -> str | None:
    """Normalise a source identifier so ``7``, ``7.0`` and ``"7"`` agree."""

    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def validate_snapshot(snapshot: CandidateSnapshot) -> None:
    """Reject ``snapshot`` before any write if it cannot be imported cleanly."""

    if not all(isinstance(getattr(snapshot, kind), list) for kind in SNAPSHOT_KINDS):
        raise InvalidFormat()
    if snapshot.items and not snapshot.categories:
        raise MissingCategories()
    if not snapshot.users:
        raise NoUsers()

    for kind, records in (
        ("category", snapshot.categories),
        ("user", snapshot.users),
        ("item", snapshot.items),
    ):
        required = REQUIRED_FIELDS[kind]
        for index, record in enumerate(records):
            if not isinstance(record, Mapping) or any(
                _is_blank(record.get(name)) for name in required
            ):
                raise IncompleteRecord(kind, required, index=index)


def parse_expiration_date(value: Any) -> datetime | None:
    """Best-effort conversion of a stored expiration date.

    Accepts ISO-8601 strings, day-first ``dd/mm/yyyy`` strings, epoch
    numbers, ``datetime``/``date`` objects and ``{"$date": ...}`` or
    ``{"year", "month", "day"}`` mappings. Anything else yields ``None``.
    """

    if _is_blank(value):
        return None
    if isinstance(value, Mapping):
        if "$date" in value:
            return parse_expiration_date(value["$date"])
        try:
            parsed = datetime(int(value["year"]), int(value["month"]), int(value["day"]))
        except (KeyError, TypeError, ValueError, OverflowError):
            return None
        return parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None

    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError:
        parsed = None
    if parsed is None and isinstance(value, str):
        for fmt in FALLBACK_DATE_FORMATS:
            try:
                parsed = datetime.strptime(value.strip(), fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # Offsets at the edges of the calendar shift the instant out of range.
        return None


def _unit_price(value: Any) -> Any:
    """Round a stored price to cents; values that are not numbers pass through."""

    if isinstance(value, bool):
        return value
    try:
        return Decimal(str(value).strip()).quantize(PRICE_STEP, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return value


def _item_payload(record: Mapping[str, Any], category_ids: Mapping[str, int]) -> dict[str, Any]:
    source_category = record.get("categoryId")
    if _is_blank(source_category):
        source_category = None
    category_id = category_ids.get(_source_key(source_category), source_category)

    payload = {
        key: default if record.get(key) is None else record[key]
        for key, default in ITEM_DEFAULTS.items()
    }

    raw_expiration = record.get("expirationDate")
    expiration_date = parse_expiration_date(raw_expiration)
    if expiration_date is None and not _is_blank(raw_expiration):
        logger.warning(
            "Invalid expiration date for item %s: %r", record.get("name"), raw_expiration
        )

    payload.update(
        name=record["name"],
        sku=record["sku"],
        description=record.get("description") or None,
        categoryId=category_id,
        unitPrice=_unit_price(record["unitPrice"]),
        location=record.get("location") or None,
        expirationDate=expiration_date,
    )
    return payload


async def _import_categories(
    session: AsyncSession, records: Sequence[Mapping[str, Any]]
) -> dict[str, int]:
    category_ids: dict[str, int] = {}
    for record in records:
        name = record["name"]
        try:
            data = schemas.CategoryCreate(name=name, description=record.get("description") or None)
            category = await crud.create_category(session, data)
            new_id = category.id
            await session.commit()
        except (SQLAlchemyError, ValidationError) as exc:
            logger.error("Failed to create category %s: %s", name, exc)
            raise ImportWriteFailed("category", str(name), exc) from exc

        source_id = _source_key(record.get("id"))
        if source_id is not None:
            category_ids[source_id] = new_id
    return category_ids


async def _import_users(
    session: AsyncSession, records: Sequence[Mapping[str, Any]]
) -> dict[str, int]:
    user_ids: dict[str, int] = {}
    for record in records:
        username = record["username"]
        is_active = record.get("isActive")
        try:
            data = schemas.UserCreate(
                username=username,
                full_name=record["fullName"],
                role=record["role"],
                is_active=True if is_active is None else is_active,
            )
            user = await crud.create_user(session, data)
            new_id = user.id
            await session.commit()
        except DuplicateUsername:
            await session.rollback()
            logger.info("User %s already exists, skipping", username)
            continue
        except (SQLAlchemyError, ValidationError) as exc:
            logger.error("Failed to create user %s: %s", username, exc)
            raise ImportWriteFailed("user", str(username), exc) from exc

        source_id = _source_key(record.get("id"))
        if source_id is not None:
            user_ids[source_id] = new_id
    return user_ids


async def _import_items(
    session: AsyncSession,
    records: Sequence[Mapping[str, Any]],
    category_ids: Mapping[str, int],
) -> None:
    for record in records:
        name = record["name"]
        try:
            data = schemas.ItemCreate.model_validate(_item_payload(record, category_ids))
            await crud.create_item(session, data)
            await session.commit()
        except (SQLAlchemyError, ValidationError) as exc:
            logger.error("Failed to create item %s: %s", name, exc)
            raise ImportWriteFailed("item", str(name), exc) from exc


async def _restore_admin(session: AsyncSession, settings: Settings) -> bool:
    try:
        await crud.create_default_admin_user(session, settings)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to restore the default admin user after import failure")
        return False
    logger.warning("Backup import failed; default admin user restored, partial data may remain")
    return True


async def import_snapshot(
    session: AsyncSession, snapshot: CandidateSnapshot, settings: Settings
) -> schemas.ImportSummary:
    """Replace the store's contents with ``snapshot``.

    Raises a :class:`~inventoria.errors.BackupValidationError` subclass,
    with the store untouched, when the snapshot is rejected, and
    :class:`~inventoria.errors.ImportWriteFailed` when a write fails after
    the store was cleared. Any other error raised after the clear starts is
    re-raised unchanged once the default admin is restored. Transactions are
    never imported.
    """

    validate_snapshot(snapshot)
    logger.info(
        "Starting backup import: %d categories, %d users, %d items",
        len(snapshot.categories),
        len(snapshot.users),
        len(snapshot.items),
    )

    try:
        await crud.clear_all_data(session)
        await session.commit()
    except Exception:
        logger.exception("Failed to clear the store before backup import")
        await session.rollback()
        await _restore_admin(session, settings)
        raise

    try:
        category_ids = await _import_categories(session, snapshot.categories)
        user_ids = await _import_users(session, snapshot.users)
        await _import_items(session, snapshot.items, category_ids)
        logger.debug(
            "Remapped %d category and %d user identifiers", len(category_ids), len(user_ids)
        )
    except ImportWriteFailed as exc:
        await session.rollback()
        exc.recovered = await _restore_admin(session, settings)
        raise
    except Exception:
        logger.exception("Unexpected error during backup import")
        await session.rollback()
        await _restore_admin(session, settings)
        raise

    await crud.create_default_admin_user(session, settings)
    await session.commit()
    logger.info("Backup import completed successfully")
    return schemas.ImportSummary(
        categories_imported=len(snapshot.categories),
        users_imported=len(snapshot.users),
        items_imported=len(snapshot.items),
    )


async def export_snapshot(
    session: AsyncSession, *, exported_at: datetime | None = None
) -> schemas.BackupDocument:
    try:
        categories = await crud.list_categories(session)
        users = await crud.list_users(session)
        items = await crud.list_items(session)
        transactions = await crud.list_transactions(session)
    except SQLAlchemyError as exc:
        logger.error("Failed to read records for backup export: %s", exc)
        raise ExportReadFailed(exc) from exc
    return encode(categories, users, items, transactions, exported_at=exported_at)


__all__ = [
    "REQUIRED_FIELDS",
    "export_snapshot",
    "import_snapshot",
    "parse_expiration_date",
    "validate_snapshot",
]
