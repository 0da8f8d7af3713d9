"""
Day-scoped dossier references: ``DOS-YYYYMMDD-NNNN``.

Sequences come from an atomic ``UPDATE ... RETURNING`` on the day's
``dossier_counters`` row. The first allocation of a day seeds the counter
from the highest numero already stored for that day, so references
created before the counter existed are never reused. The unique index on
``dossiers.numero`` remains the final guard: a collision on insert
allocates the next value and retries.
"""

import logging
import time
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.dossiers.models import Dossier, DossierCounter

logger = logging.getLogger(__name__)

PREFIX = "DOS"
MAX_ATTEMPTS = 100


def day_prefix(day: date) -> str:
    return f"{PREFIX}-{day:%Y%m%d}-"


def format_numero(day: date, sequence: int) -> str:
    return f"{day_prefix(day)}{sequence:04d}"


def parse_sequence(numero: str | None, prefix: str) -> int:
    if not numero or not numero.startswith(prefix):
        return 0
    tail = numero[len(prefix):]
    return int(tail) if tail.isdigit() else 0


def fallback_numero() -> str:
    return f"{PREFIX}-{int(time.time() * 1000)}"


async def _seed_counter(db: AsyncSession, day: date) -> None:
    prefix = day_prefix(day)
    result = await db.execute(
        select(Dossier.numero).where(Dossier.numero.like(f"{prefix}%")).order_by(Dossier.numero.desc()).limit(1)
    )
    last = parse_sequence(result.scalar_one_or_none(), prefix)
    try:
        async with db.begin_nested():
            db.add(DossierCounter(day=day, last_value=last))
            await db.flush()
    except IntegrityError:
        # Another request seeded the same day first.
        logger.debug("Counter for %s already seeded", day)


async def next_numero(db: AsyncSession, day: date) -> str:
    stmt = (
        update(DossierCounter)
        .where(DossierCounter.day == day)
        .values(last_value=DossierCounter.last_value + 1)
        .returning(DossierCounter.last_value)
        .execution_options(synchronize_session=False)
    )
    value = (await db.execute(stmt)).scalar_one_or_none()
    if value is None:
        await _seed_counter(db, day)
        value = (await db.execute(stmt)).scalar_one()
    return format_numero(day, value)


async def _numero_taken(db: AsyncSession, numero: str) -> bool:
    result = await db.execute(select(Dossier.id).where(Dossier.numero == numero))
    return result.scalar_one_or_none() is not None


async def insert_with_numero(db: AsyncSession, dossier: Dossier, day: date) -> Dossier:
    """Assign a numero and insert the dossier, retrying on numero collisions."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            async with db.begin_nested():
                candidate = await next_numero(db, day)
        except SQLAlchemyError:
            logger.exception("Numero allocation failed for %s, using fallback", day)
            break

        dossier.numero = candidate
        try:
            async with db.begin_nested():
                db.add(dossier)
                await db.flush()
            return dossier
        except IntegrityError:
            if not await _numero_taken(db, candidate):
                raise
            logger.warning("Numero %s already taken (attempt %d/%d)", candidate, attempt, MAX_ATTEMPTS)

    dossier.numero = fallback_numero()
    db.add(dossier)
    await db.flush()
    return dossier
