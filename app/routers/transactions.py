import logging
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_insight_dispatcher, get_session, verify_telegram_authentication
from app.models.schemas import Transaction, TransactionCreate, TransactionUpdate
from app.models.sql import CategoryDB, TransactionDB
from app.services.dispatcher import InsightDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transactions"])


# --- Helpers ---
def _get_date_for_storage(date_input: str | datetime | None, timezone_offset_str: str | None) -> datetime:
    """
    Converts user input date to UTC datetime for storage.
    """
    if not date_input:
        return datetime.now(UTC)

    try:
        if isinstance(date_input, datetime):
            if date_input.tzinfo is None:
                return date_input.replace(tzinfo=UTC)
            return date_input.astimezone(UTC)

        if "T" in date_input:
            dt = datetime.fromisoformat(date_input.replace("Z", "+00:00"))
            return dt.astimezone(UTC) if dt.tzinfo else dt.replace(tzinfo=UTC)

        selected_date = datetime.strptime(date_input, "%Y-%m-%d").date()
        server_now = datetime.now(UTC)

        user_now = server_now
        if timezone_offset_str and timezone_offset_str.lstrip("-").isdigit():
            user_now = server_now - timedelta(minutes=int(timezone_offset_str))

        if selected_date == user_now.date():
            return server_now

        return datetime.combine(selected_date, datetime.min.time()).replace(tzinfo=UTC)

    except ValueError as e:
        logger.warning(f"Date parse error: {e}")
        raise HTTPException(status_code=422, detail=f"Invalid date: {date_input}") from e


async def _get_category(session: AsyncSession, category_id: int, user_id: str) -> CategoryDB:
    stmt = select(CategoryDB).where(
        CategoryDB.id == category_id, (CategoryDB.user_id == user_id) | (CategoryDB.user_id.is_(None))
    )
    result = await session.execute(stmt)
    category = result.scalar_one_or_none()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


# --- Endpoints ---


@router.get("/transactions", response_model=list[Transaction])
async def get_transactions(
    limit: int = 50,
    offset: int = 0,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
):
    stmt = (
        select(
            TransactionDB.id,
            TransactionDB.amount,
            TransactionDB.date,
            TransactionDB.category_id,
            TransactionDB.note,
            CategoryDB.name.label("category"),
            CategoryDB.type,
        )
        .join(CategoryDB, TransactionDB.category_id == CategoryDB.id)
        .where(TransactionDB.user_id == user["id"])
        .order_by(desc(TransactionDB.date), desc(TransactionDB.id))
        .limit(limit)
        .offset(offset)
    )

    result = await session.execute(stmt)
    return [dict(row) for row in result.mappings().all()]


@router.post("/transactions", response_model=Transaction)
async def add_transaction(
    tx: TransactionCreate,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
    dispatcher: InsightDispatcher = Depends(get_insight_dispatcher),
    x_timezone_offset: str | None = Header(None, alias="X-Timezone-Offset"),
):
    user_id = user["id"]
    category = await _get_category(session, tx.category_id, user_id)

    new_tx = TransactionDB(
        user_id=user_id,
        amount=tx.amount,
        category_id=category.id,
        date=_get_date_for_storage(tx.date, x_timezone_offset),
        note=tx.note,
    )

    session.add(new_tx)
    try:
        await session.commit()
        await session.refresh(new_tx)
    except Exception as e:
        await session.rollback()
        raise HTTPException(status_code=500, detail=str(e)) from e

    # Insights never hold up or fail the mutation
    dispatcher.schedule(user_id)

    return Transaction(
        id=new_tx.id,
        amount=new_tx.amount,
        date=new_tx.date,
        category_id=new_tx.category_id,
        category=category.name,
        type=category.type,
        note=new_tx.note,
    )


@router.patch("/transactions/{tx_id}")
async def update_transaction(
    tx_id: int,
    update_data: TransactionUpdate,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
    dispatcher: InsightDispatcher = Depends(get_insight_dispatcher),
    x_timezone_offset: str | None = Header(None, alias="X-Timezone-Offset"),
):
    user_id = user["id"]

    stmt = select(TransactionDB).where((TransactionDB.id == tx_id) & (TransactionDB.user_id == user_id))
    result = await session.execute(stmt)
    transaction = result.scalar_one_or_none()

    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    if update_data.amount is not None:
        transaction.amount = update_data.amount

    if update_data.category_id is not None:
        category = await _get_category(session, update_data.category_id, user_id)
        transaction.category_id = category.id

    if update_data.note is not None:
        transaction.note = update_data.note

    if update_data.date is not None:
        transaction.date = _get_date_for_storage(update_data.date, x_timezone_offset)

    await session.commit()
    dispatcher.schedule(user_id)
    return {"status": "updated"}


@router.delete("/transactions/{tx_id}")
async def delete_transaction(
    tx_id: int,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
    dispatcher: InsightDispatcher = Depends(get_insight_dispatcher),
):
    user_id = user["id"]
    stmt = delete(TransactionDB).where((TransactionDB.id == tx_id) & (TransactionDB.user_id == user_id))
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Transaction not found")

    dispatcher.schedule(user_id)
    return {"status": "deleted"}
