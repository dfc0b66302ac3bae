from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_insight_dispatcher, get_session, verify_telegram_authentication
from app.models.schemas import GenerateResult, Insight, InsightList
from app.services.dispatcher import InsightDispatcher
from app.services.exceptions import InsightAccessDeniedError, InsightNotFoundError
from app.services.insights import InsightService

router = APIRouter(prefix="/insights", tags=["insights"])


@router.post("/generate", response_model=GenerateResult)
async def generate_insights(
    user=Depends(verify_telegram_authentication),
    dispatcher: InsightDispatcher = Depends(get_insight_dispatcher),
):
    count = await dispatcher.run_for_user(user["id"])
    message = f"Generated {count} new notifications" if count > 0 else "No new notifications to generate"
    return GenerateResult(message=message, count=count)


@router.get("", response_model=InsightList)
async def get_insights(
    unread_only: bool = False,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
):
    insights = await InsightService(session).list_insights(user["id"], unread_only=unread_only)
    return InsightList(notifications=[Insight.model_validate(i) for i in insights])


@router.put("/read-all")
async def mark_all_insights_read(
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
):
    updated = await InsightService(session).mark_all_read(user["id"])
    return {"success": True, "message": "All notifications marked as read", "updated": updated}


@router.put("/{insight_id}/read")
async def mark_insight_read(
    insight_id: int,
    user=Depends(verify_telegram_authentication),
    session: AsyncSession = Depends(get_session),
):
    try:
        await InsightService(session).mark_read(user["id"], insight_id)
    except InsightNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InsightAccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e

    return {"success": True, "message": "Notification marked as read"}
