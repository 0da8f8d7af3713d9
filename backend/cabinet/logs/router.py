import uuid
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from cabinet.auth.models import User
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.database import get_db
from cabinet.dependencies import require_superadmin
from cabinet.logs.models import LogAction
from cabinet.logs.pdf import pdf_filename, render_dlog_pdf
from cabinet.logs.schemas import LogStats
from cabinet.logs.service import get_log_stats, get_logs, get_logs_for_day, log_to_response

router = APIRouter()


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_superadmin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=100, ge=1, le=500),
    action: Optional[LogAction] = None,
    user_id: Optional[uuid.UUID] = None,
    target_user_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    entries, total = await get_logs(db, page, page_size, action, user_id, target_user_id, start_date, end_date)
    items = [log_to_response(e).model_dump() for e in entries]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/stats", response_model=ApiResponse[LogStats])
async def log_statistics(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_superadmin)],
):
    return ok(await get_log_stats(db))


@router.get("/dlog/pdf")
async def export_daily_log(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_superadmin)],
    day: Optional[str] = Query(default=None, alias="date"),
):
    if not day:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="La date est requise (format YYYY-MM-DD)")
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Date invalide (format YYYY-MM-DD)")

    entries = await get_logs_for_day(db, parsed)
    # reportlab is synchronous; keep it off the event loop.
    content = await run_in_threadpool(render_dlog_pdf, entries, parsed)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{pdf_filename(parsed)}"'},
    )
