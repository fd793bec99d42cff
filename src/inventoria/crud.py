"""Business logic for interacting with the database."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas
from .config import Settings
from .errors import DuplicateUsername
from .models import Category, Item, Transaction, User

ADMIN_ROLE = "admin"
UNCATEGORIZED = "Uncategorized"


async def _get_by_id(session: AsyncSession, model: type, label: str, record_id: int):
    stmt = select(model).where(model.id == record_id)
    result = await session.execute(stmt)
    record = result.scalar_one_or_none()
    if record is None:
        raise NoResultFound(f"{label} {record_id} not found")
    return record


async def _apply_update(session: AsyncSession, record, data: schemas.CamelModel):
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(record, field, value)
    await session.flush()
    return record


async def create_category(session: AsyncSession, data: schemas.CategoryCreate) -> Category:
    category = Category(**data.model_dump())
    session.add(category)
    await session.flush()
    return category


async def list_categories(session: AsyncSession) -> Sequence[Category]:
    result = await session.execute(select(Category).order_by(Category.id))
    return result.scalars().all()


async def get_category(session: AsyncSession, category_id: int) -> Category:
    return await _get_by_id(session, Category, "Category", category_id)


async def update_category(
    session: AsyncSession, category: Category, data: schemas.CategoryUpdate
) -> Category:
    return await _apply_update(session, category, data)


async def delete_category(session: AsyncSession, category: Category) -> None:
    await session.delete(category)
    await session.flush()


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, data: schemas.UserCreate) -> User:
    if await get_user_by_username(session, data.username) is not None:
        raise DuplicateUsername(data.username)
    user = User(**data.model_dump())
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise DuplicateUsername(data.username) from exc
    return user


async def list_users(session: AsyncSession) -> Sequence[User]:
    result = await session.execute(select(User).order_by(User.id))
    return result.scalars().all()


async def get_user(session: AsyncSession, user_id: int) -> User:
    return await _get_by_id(session, User, "User", user_id)


async def update_user(session: AsyncSession, user: User, data: schemas.UserUpdate) -> User:
    username = data.username
    if username is not None and username != user.username:
        if await get_user_by_username(session, username) is not None:
            raise DuplicateUsername(username)
    return await _apply_update(session, user, data)


async def delete_user(session: AsyncSession, user: User) -> None:
    await session.delete(user)
    await session.flush()


async def get_admin_user(session: AsyncSession) -> User | None:
    stmt = select(User).where(User.role == ADMIN_ROLE).order_by(User.id).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_default_admin_user(session: AsyncSession, settings: Settings) -> User:
    """Make sure at least one user with the admin role exists.

    Returns the existing administrator when there is one. Otherwise the
    configured default administrator is created, or promoted when a
    non-admin user already holds that username.
    """

    admin = await get_admin_user(session)
    if admin is not None:
        return admin

    existing = await get_user_by_username(session, settings.default_admin_username)
    if existing is not None:
        existing.role = ADMIN_ROLE
        existing.is_active = True
        await session.flush()
        return existing

    admin = User(
        username=settings.default_admin_username,
        full_name=settings.default_admin_full_name,
        role=ADMIN_ROLE,
        is_active=True,
    )
    session.add(admin)
    await session.flush()
    return admin


async def create_item(session: AsyncSession, data: schemas.ItemCreate) -> Item:
    item = Item(**data.model_dump())
    session.add(item)
    await session.flush()
    return item


def _filter_items(
    stmt: Select, *, search: str | None, category_id: int | None, uncategorized: bool
) -> Select:
    if search:
        pattern = f"%{search}%"
        return stmt.where(
            or_(Item.name.ilike(pattern), Item.sku.ilike(pattern), Item.description.ilike(pattern))
        )
    if uncategorized:
        return stmt.where(Item.category_id.is_(None))
    if category_id is not None:
        return stmt.where(Item.category_id == category_id)
    return stmt


async def list_items(
    session: AsyncSession,
    *,
    search: str | None = None,
    category_id: int | None = None,
    uncategorized: bool = False,
) -> Sequence[Item]:
    stmt = _filter_items(
        select(Item).order_by(Item.name),
        search=search,
        category_id=category_id,
        uncategorized=uncategorized,
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_items_with_category(
    session: AsyncSession,
    *,
    search: str | None = None,
    category_id: int | None = None,
    uncategorized: bool = False,
) -> list[schemas.ItemWithCategoryOut]:
    stmt = _filter_items(
        select(Item, Category.name.label("category_name"))
        .outerjoin(Category, Item.category_id == Category.id)
        .order_by(Item.name),
        search=search,
        category_id=category_id,
        uncategorized=uncategorized,
    )
    result = await session.execute(stmt)
    rows = result.all()
    return [
        schemas.ItemWithCategoryOut(
            **schemas.ItemOut.model_validate(row.Item).model_dump(),
            category_name=row.category_name or UNCATEGORIZED,
        )
        for row in rows
    ]


async def get_item(session: AsyncSession, item_id: int) -> Item:
    return await _get_by_id(session, Item, "Item", item_id)


async def update_item(session: AsyncSession, item: Item, data: schemas.ItemUpdate) -> Item:
    return await _apply_update(session, item, data)


async def delete_item(session: AsyncSession, item: Item) -> None:
    await session.delete(item)
    await session.flush()


async def list_low_stock_items(session: AsyncSession) -> Sequence[Item]:
    stmt = select(Item).where(Item.quantity <= Item.min_stock_level).order_by(Item.name)
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_expiring_items(
    session: AsyncSession, days: int, *, now: datetime | None = None
) -> Sequence[Item]:
    cutoff = (now or datetime.now(timezone.utc)) + timedelta(days=days)
    stmt = (
        select(Item)
        .where(
            Item.expirable.is_(True),
            Item.expiration_date.is_not(None),
            Item.expiration_date <= cutoff,
        )
        .order_by(Item.expiration_date)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def _resolve_actor(session: AsyncSession, user_id: int | None) -> User:
    if user_id is not None:
        return await get_user(session, user_id)
    admin = await get_admin_user(session)
    if admin is None:
        raise NoResultFound("No admin user available to attribute the transaction to")
    return admin


async def rent_item(
    session: AsyncSession, item: Item, data: schemas.StockMovement
) -> tuple[Item, Transaction]:
    actor = await _resolve_actor(session, data.user_id)
    available = item.quantity - item.rented_count - item.broken_count
    if not item.rentable:
        raise ValueError(f"Item {item.name} is not rentable.")
    if data.quantity > available:
        raise ValueError(f"Only {available} units of {item.name} are available.")

    item.rented_count += data.quantity
    transaction = Transaction(
        type="out",
        quantity=data.quantity,
        user_id=actor.id,
        item_id=item.id,
        notes=f"Rented {data.quantity} units of {item.name}",
    )
    session.add(transaction)
    await session.flush()
    return item, transaction


async def return_item(
    session: AsyncSession, item: Item, data: schemas.StockMovement
) -> tuple[Item, Transaction]:
    actor = await _resolve_actor(session, data.user_id)
    if data.quantity > item.rented_count:
        raise ValueError(f"Cannot return more than the {item.rented_count} rented units.")

    item.rented_count -= data.quantity
    transaction = Transaction(
        type="in",
        quantity=data.quantity,
        user_id=actor.id,
        item_id=item.id,
        notes=f"Returned {data.quantity} units of {item.name}",
    )
    session.add(transaction)
    await session.flush()
    return item, transaction


async def create_transaction(
    session: AsyncSession, data: schemas.TransactionCreate
) -> Transaction:
    actor = await _resolve_actor(session, data.user_id)
    if data.item_id is not None:
        item = await get_item(session, data.item_id)
        if data.type == "in":
            item.quantity += data.quantity
        elif data.type == "out":
            new_quantity = item.quantity - data.quantity
            if new_quantity < 0:
                raise ValueError("Cannot reduce inventory below zero.")
            item.quantity = new_quantity

    transaction = Transaction(**data.model_dump(exclude={"user_id"}), user_id=actor.id)
    session.add(transaction)
    await session.flush()
    return transaction


async def log_activity(session: AsyncSession, notes: str) -> Transaction | None:
    """Record an administrative ``adjustment`` attributed to the first admin."""

    admin = await get_admin_user(session)
    if admin is None:
        return None
    transaction = Transaction(type="adjustment", quantity=1, user_id=admin.id, notes=notes)
    session.add(transaction)
    await session.flush()
    return transaction


async def list_transactions(
    session: AsyncSession, *, limit: int | None = None
) -> Sequence[Transaction]:
    stmt = select(Transaction).order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_transactions_with_details(
    session: AsyncSession, *, limit: int | None = None
) -> list[schemas.TransactionWithDetailsOut]:
    stmt = (
        select(Transaction, Item, User)
        .outerjoin(Item, Transaction.item_id == Item.id)
        .outerjoin(User, Transaction.user_id == User.id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    rows = result.all()
    return [
        schemas.TransactionWithDetailsOut(
            **schemas.TransactionOut.model_validate(row.Transaction).model_dump(),
            item=None if row.Item is None else schemas.TransactionItemRef.model_validate(row.Item),
            user=None if row.User is None else schemas.TransactionUserRef.model_validate(row.User),
        )
        for row in rows
    ]


async def flush_transactions(session: AsyncSession) -> None:
    await session.execute(delete(Transaction))
    await session.flush()


async def clear_all_data(session: AsyncSession) -> None:
    """Delete every record of every kind, dependents first."""

    for model in (Transaction, Item, User, Category):
        await session.execute(delete(model))
    await session.flush()
    session.expunge_all()


async def get_dashboard_stats(
    session: AsyncSession, *, now: datetime | None = None
) -> schemas.DashboardStats:
    now = now or datetime.now(timezone.utc)
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)

    total_items = await session.scalar(select(func.count(Item.id)))
    total_value = await session.scalar(
        select(func.coalesce(func.sum(Item.quantity * Item.unit_price), 0))
    )
    low_stock_count = await session.scalar(
        select(func.count(Item.id)).where(Item.quantity <= Item.min_stock_level)
    )
    today_transactions = await session.scalar(
        select(func.count(Transaction.id)).where(Transaction.created_at >= start_of_day)
    )
    return schemas.DashboardStats(
        total_items=total_items or 0,
        total_value=Decimal(str(total_value or 0)).quantize(Decimal("0.01")),
        low_stock_count=low_stock_count or 0,
        today_transactions=today_transactions or 0,
    )


__all__ = [name for name in globals() if not name.startswith("_")]
