"""Authoritative no-double-booking check.

try_commit_booking runs the overlap check and the insert in one transaction,
after taking the provider's schedule lock row. Writers for the same provider
queue on that row; writers for other providers never touch it. On PostgreSQL
the bookings table also carries a range-exclusion constraint over active
bookings, so the database rejects an overlap even if this code is bypassed.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.db import store_errors
from clinic_scheduling.core.errors import SlotTaken
from clinic_scheduling.models.booking import Booking, ProviderScheduleLock
from clinic_scheduling.services.booking_store import find_overlapping_booking

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def lock_provider_schedule(session: AsyncSession, provider_id: int) -> None:
    """Take the per-provider write lock for the rest of the current transaction."""
    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is not None:
        await session.execute(
            insert(ProviderScheduleLock)
            .values(provider_id=provider_id, version=0)
            .on_conflict_do_nothing(index_elements=["provider_id"])
        )
    else:
        existing = await session.get(ProviderScheduleLock, provider_id)
        if existing is None:
            session.add(ProviderScheduleLock(provider_id=provider_id, version=0))
            await session.flush()
    await session.execute(
        update(ProviderScheduleLock)
        .where(ProviderScheduleLock.provider_id == provider_id)
        .values(version=ProviderScheduleLock.version + 1)
    )


async def _existing_for_token(session: AsyncSession, token: str) -> Booking | None:
    result = await session.execute(select(Booking).where(Booking.idempotency_token == token))
    return result.scalar_one_or_none()


async def try_commit_booking(
    session: AsyncSession, candidate: Booking, buffer_minutes: int = 0
) -> tuple[Booking, bool]:
    """Insert candidate unless it overlaps an active booking of the same provider.

    Returns (booking, created). A candidate whose idempotency token is already
    stored returns the stored booking with created=False instead of a second row.
    Raises SlotTaken on overlap. The transaction is committed before returning.
    """
    with store_errors("try_commit_booking"):
        try:
            await lock_provider_schedule(session, candidate.provider_id)

            existing = await _existing_for_token(session, candidate.idempotency_token)
            if existing is not None:
                await session.commit()
                logger.info(
                    "Commit replay for token %s returned booking %s",
                    candidate.idempotency_token, existing.id,
                )
                return existing, False

            clash = await find_overlapping_booking(
                session,
                candidate.provider_id,
                candidate.scheduled_start,
                candidate.scheduled_end,
                buffer_minutes,
            )
            if clash is not None:
                await session.rollback()
                logger.info(
                    "Slot taken: provider %s %s-%s overlaps booking %s",
                    candidate.provider_id, candidate.scheduled_start, candidate.scheduled_end, clash.id,
                )
                raise SlotTaken()

            session.add(candidate)
            await session.flush()
            await session.commit()
        except IntegrityError as exc:
            # Exclusion constraint or a concurrent insert of the same token
            await session.rollback()
            replay = await _existing_for_token(session, candidate.idempotency_token)
            if replay is not None:
                return replay, False
            logger.info("Slot taken (constraint) for provider %s: %s", candidate.provider_id, exc.orig)
            raise SlotTaken() from exc

    logger.info(
        "Committed booking %s for provider %s at %s (%d min)",
        candidate.id, candidate.provider_id, candidate.scheduled_start, candidate.duration_minutes,
    )
    return candidate, True
