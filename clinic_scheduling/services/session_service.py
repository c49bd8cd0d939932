import logging
from typing import Protocol

from clinic_scheduling.models.booking import Booking

logger = logging.getLogger(__name__)


class SessionCollaborator(Protocol):
    """Video/consultation session side. Called after a transition is committed."""

    async def session_started(self, booking: Booking) -> None: ...

    async def session_completed(self, booking: Booking) -> None: ...


class LoggingSessionNotifier:
    async def session_started(self, booking: Booking) -> None:
        logger.info("Session started for booking %s (provider %s)", booking.id, booking.provider_id)

    async def session_completed(self, booking: Booking) -> None:
        logger.info("Session completed for booking %s (provider %s)", booking.id, booking.provider_id)
