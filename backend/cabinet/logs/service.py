import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.base_models import dump_json, load_json, utcnow
from cabinet.common.pagination import fetch_page
from cabinet.logs.models import ActivityLog, LogAction
from cabinet.logs.schemas import ActionCount, DayCount, LogResponse, LogStats

logger = logging.getLogger(__name__)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.client.host if request.client else None


async def record_log(
    db: AsyncSession,
    action: LogAction,
    *,
    user: Optional[User] = None,
    target_user: Optional[User] = None,
    description: str = "",
    request: Optional[Request] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[ActivityLog]:
    """Append a log entry without ever failing the caller's operation.

    The insert runs in a SAVEPOINT so a failure only discards the log row.
    """
    entry = ActivityLog(
        action=action,
        user_id=user.id if user else None,
        user_email=user.email if user else None,
        target_user_id=target_user.id if target_user else None,
        target_user_email=target_user.email if target_user else None,
        description=description,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent", "")[:500] if request is not None else None,
        metadata_json=dump_json(metadata),
    )
    try:
        async with db.begin_nested():
            db.add(entry)
            await db.flush()
    except SQLAlchemyError:
        logger.exception("Failed to record %s log entry", action.value)
        return None
    return entry


def log_to_response(entry: ActivityLog) -> LogResponse:
    return LogResponse(
        id=entry.id,
        action=entry.action,
        user_id=entry.user_id,
        user_email=entry.user_email,
        target_user_id=entry.target_user_id,
        target_user_email=entry.target_user_email,
        description=entry.description,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        metadata=load_json(entry.metadata_json),
        timestamp=entry.timestamp,
    )


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


async def get_logs(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 100,
    action: Optional[LogAction] = None,
    user_id: Optional[uuid.UUID] = None,
    target_user_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> tuple[list[ActivityLog], int]:
    query = select(ActivityLog)
    count_query = select(func.count(ActivityLog.id))

    if action:
        query = query.where(ActivityLog.action == action)
        count_query = count_query.where(ActivityLog.action == action)
    if user_id:
        query = query.where(ActivityLog.user_id == user_id)
        count_query = count_query.where(ActivityLog.user_id == user_id)
    if target_user_id:
        query = query.where(ActivityLog.target_user_id == target_user_id)
        count_query = count_query.where(ActivityLog.target_user_id == target_user_id)
    if start_date:
        start, _ = day_bounds(start_date)
        query = query.where(ActivityLog.timestamp >= start)
        count_query = count_query.where(ActivityLog.timestamp >= start)
    if end_date:
        # end_date is inclusive of the whole day
        _, end = day_bounds(end_date)
        query = query.where(ActivityLog.timestamp < end)
        count_query = count_query.where(ActivityLog.timestamp < end)

    return await fetch_page(db, query.order_by(ActivityLog.timestamp.desc()), count_query, page, page_size)


async def get_logs_for_day(db: AsyncSession, day: date) -> list[ActivityLog]:
    start, end = day_bounds(day)
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.timestamp >= start, ActivityLog.timestamp < end)
        .order_by(ActivityLog.timestamp.asc())
    )
    return list(result.scalars().all())


async def get_log_stats(db: AsyncSession, days: int = 30) -> LogStats:
    total = (await db.execute(select(func.count(ActivityLog.id)))).scalar_one()
    login_count = (
        await db.execute(select(func.count(ActivityLog.id)).where(ActivityLog.action == LogAction.login))
    ).scalar_one()

    action_rows = await db.execute(
        select(ActivityLog.action, func.count(ActivityLog.id).label("count"))
        .group_by(ActivityLog.action)
        .order_by(func.count(ActivityLog.id).desc())
    )
    by_action = [
        ActionCount(action=action.value if isinstance(action, LogAction) else str(action), count=count)
        for action, count in action_rows.all()
    ]

    since, _ = day_bounds(utcnow().date() - timedelta(days=days - 1))
    day_column = func.date(ActivityLog.timestamp)
    day_rows = await db.execute(
        select(day_column.label("day"), func.count(ActivityLog.id).label("count"))
        .where(ActivityLog.timestamp >= since)
        .group_by(day_column)
        .order_by(day_column.asc())
    )
    by_day = [DayCount(day=day, count=count) for day, count in day_rows.all()]

    return LogStats(total_actions=total, login_count=login_count, by_action=by_action, by_day=by_day)


def count_by_action(entries: list[ActivityLog]) -> list[tuple[str, int]]:
    counts: dict[str, int] = {}
    for entry in entries:
        key = entry.action.value if isinstance(entry.action, LogAction) else str(entry.action)
        counts[key] = counts.get(key, 0) + 1
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
