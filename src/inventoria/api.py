"""FastAPI router configuration."""
from __future__ import annotations

import logging
from collections.abc import Sequence

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import backup, crud, schemas, snapshot
from .config import Settings, get_settings
from .database import get_session
from .errors import (
    BackupValidationError,
    DuplicateUsername,
    ExportReadFailed,
    ImportWriteFailed,
    MalformedDocument,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESTORED_DETAILS = "The database has been restored to a safe state with default data."


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def _not_found(exc: NoResultFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


@router.get("/categories", response_model=list[schemas.CategoryOut], tags=["categories"])
async def list_categories(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.CategoryOut]:
    categories = await crud.list_categories(session)
    return [schemas.CategoryOut.model_validate(category) for category in categories]


@router.post(
    "/categories",
    response_model=schemas.CategoryOut,
    status_code=status.HTTP_201_CREATED,
    tags=["categories"],
)
async def create_category(
    payload: schemas.CategoryCreate, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    category = await crud.create_category(session, payload)
    await session.commit()
    return schemas.CategoryOut.model_validate(category)


@router.get("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def get_category(
    category_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    try:
        category = await crud.get_category(session, category_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.CategoryOut.model_validate(category)


@router.put("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CategoryOut:
    try:
        category = await crud.get_category(session, category_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    category = await crud.update_category(session, category, payload)
    await session.commit()
    await session.refresh(category)
    return schemas.CategoryOut.model_validate(category)


@router.delete(
    "/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["categories"]
)
async def delete_category(category_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        category = await crud.get_category(session, category_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_category(session, category)
    await session.commit()


@router.get("/items", response_model=list[schemas.ItemWithCategoryOut], tags=["items"])
async def list_items(
    search: str | None = None,
    category: str | None = Query(
        default=None, description='Category id, "uncategorized" or "all".'
    ),
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.ItemWithCategoryOut]:
    category_id: int | None = None
    uncategorized = category == "uncategorized"
    if category and category not in ("all", "uncategorized"):
        try:
            category_id = int(category)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid category {category!r}"
            ) from exc
    return await crud.list_items_with_category(
        session, search=search, category_id=category_id, uncategorized=uncategorized
    )


@router.get("/items/low-stock", response_model=list[schemas.ItemOut], tags=["items"])
async def list_low_stock(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.ItemOut]:
    items = await crud.list_low_stock_items(session)
    return [schemas.ItemOut.model_validate(item) for item in items]


@router.get("/items/expires-soon", response_model=list[schemas.ItemOut], tags=["items"])
async def list_expiring(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.ItemOut]:
    items = await crud.list_expiring_items(session, settings.expires_soon_threshold)
    return [schemas.ItemOut.model_validate(item) for item in items]


@router.post(
    "/items",
    response_model=schemas.ItemOut,
    status_code=status.HTTP_201_CREATED,
    tags=["items"],
)
async def create_item(
    payload: schemas.ItemCreate, session: AsyncSession = Depends(get_session)
) -> schemas.ItemOut:
    item = await crud.create_item(session, payload)
    await session.commit()
    return schemas.ItemOut.model_validate(item)


@router.get("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def get_item(item_id: int, session: AsyncSession = Depends(get_session)) -> schemas.ItemOut:
    try:
        item = await crud.get_item(session, item_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.ItemOut.model_validate(item)


@router.put("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def update_item(
    item_id: int,
    payload: schemas.ItemUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemOut:
    try:
        item = await crud.get_item(session, item_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    item = await crud.update_item(session, item, payload)
    await session.commit()
    await session.refresh(item)
    return schemas.ItemOut.model_validate(item)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["items"])
async def delete_item(item_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        item = await crud.get_item(session, item_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_item(session, item)
    await session.commit()


async def _move_stock(session: AsyncSession, item_id: int, payload: schemas.StockMovement, mover):
    try:
        item = await crud.get_item(session, item_id)
        item, _ = await mover(session, item, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await session.commit()
    await session.refresh(item)
    return schemas.ItemOut.model_validate(item)


@router.post("/items/{item_id}/rent", response_model=schemas.ItemOut, tags=["items"])
async def rent_item(
    item_id: int,
    payload: schemas.StockMovement,
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemOut:
    return await _move_stock(session, item_id, payload, crud.rent_item)


@router.post("/items/{item_id}/return", response_model=schemas.ItemOut, tags=["items"])
async def return_item(
    item_id: int,
    payload: schemas.StockMovement,
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemOut:
    return await _move_stock(session, item_id, payload, crud.return_item)


@router.get("/users", response_model=list[schemas.UserOut], tags=["users"])
async def list_users(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.UserOut]:
    users = await crud.list_users(session)
    return [schemas.UserOut.model_validate(user) for user in users]


@router.post(
    "/users",
    response_model=schemas.UserOut,
    status_code=status.HTTP_201_CREATED,
    tags=["users"],
)
async def create_user(
    payload: schemas.UserCreate, session: AsyncSession = Depends(get_session)
) -> schemas.UserOut:
    try:
        user = await crud.create_user(session, payload)
    except DuplicateUsername as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Username already exists"
        ) from exc
    await crud.log_activity(
        session, f"User created: {user.full_name} ({user.username}) with role {user.role}"
    )
    await session.commit()
    return schemas.UserOut.model_validate(user)


@router.get("/users/{user_id}", response_model=schemas.UserOut, tags=["users"])
async def get_user(user_id: int, session: AsyncSession = Depends(get_session)) -> schemas.UserOut:
    try:
        user = await crud.get_user(session, user_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.UserOut.model_validate(user)


@router.put("/users/{user_id}", response_model=schemas.UserOut, tags=["users"])
async def update_user(
    user_id: int,
    payload: schemas.UserUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.UserOut:
    try:
        user = await crud.get_user(session, user_id)
        user = await crud.update_user(session, user, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except DuplicateUsername as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Username already exists"
        ) from exc
    await session.commit()
    await session.refresh(user)
    return schemas.UserOut.model_validate(user)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["users"])
async def delete_user(user_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        user = await crud.get_user(session, user_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    notes = f"User deleted: {user.full_name} ({user.username})"
    await crud.delete_user(session, user)
    await crud.log_activity(session, notes)
    await session.commit()


@router.get(
    "/transactions", response_model=list[schemas.TransactionWithDetailsOut], tags=["transactions"]
)
async def list_transactions(
    limit: int | None = Query(default=None, ge=1),
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.TransactionWithDetailsOut]:
    return await crud.list_transactions_with_details(session, limit=limit)


@router.post(
    "/transactions",
    response_model=schemas.TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["transactions"],
)
async def create_transaction(
    payload: schemas.TransactionCreate, session: AsyncSession = Depends(get_session)
) -> schemas.TransactionOut:
    try:
        transaction = await crud.create_transaction(session, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await session.commit()
    return schemas.TransactionOut.model_validate(transaction)


@router.get("/dashboard/stats", response_model=schemas.DashboardStats, tags=["dashboard"])
async def dashboard_stats(session: AsyncSession = Depends(get_session)) -> schemas.DashboardStats:
    return await crud.get_dashboard_stats(session)


@router.get(
    "/settings/expires-threshold", response_model=schemas.ExpiresThreshold, tags=["system"]
)
async def expires_threshold(
    settings: Settings = Depends(provide_settings),
) -> schemas.ExpiresThreshold:
    return schemas.ExpiresThreshold(expires_soon_threshold=settings.expires_soon_threshold)


@router.get("/database/backup/export", response_model=schemas.BackupDocument, tags=["database"])
async def export_backup(
    response: Response, session: AsyncSession = Depends(get_session)
) -> schemas.BackupDocument:
    try:
        document = await backup.export_snapshot(session)
    except ExportReadFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to export backup"
        ) from exc
    filename = f"inventoria_backup_{document.export_date.date().isoformat()}.json"
    response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return document


async def _read_backup_payload(request: Request) -> bytes:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        return await request.body()
    form = await request.form()
    upload = form.get("backup")
    if upload is None or isinstance(upload, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing backup file")
    return await upload.read()


@router.post("/database/backup/import", response_model=schemas.ImportResult, tags=["database"])
async def import_backup(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.ImportResult:
    """Restore a backup sent as a ``backup`` file upload or as a JSON body."""

    payload = await _read_backup_payload(request)
    try:
        candidate = snapshot.decode(payload)
        summary = await backup.import_snapshot(session, candidate, settings)
    except (MalformedDocument, BackupValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ImportWriteFailed as exc:
        details = RESTORED_DETAILS if exc.recovered else "The default admin user could not be restored."
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"Failed to import backup: {exc}", "details": details},
        ) from exc
    return schemas.ImportResult(imported=summary)


@router.post("/database/flush-activity", tags=["database"])
async def flush_activity(session: AsyncSession = Depends(get_session)) -> dict[str, str]:
    await crud.flush_transactions(session)
    await session.commit()
    logger.info("Activity log flushed")
    return {"message": "Activity logs flushed successfully"}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name)
    app.dependency_overrides[provide_settings] = lambda: settings
    app.include_router(router, prefix="/api")
    return app


app = create_app()


__all__ = ["app", "create_app"]
