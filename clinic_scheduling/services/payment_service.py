"""Payment initiation for held bookings.

Only initiation lives here. Payment outcomes come back as lifecycle events
(payment_succeeded / payment_failed) posted by the gateway webhook handler.
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core.config import settings
from clinic_scheduling.core.db import store_errors
from clinic_scheduling.core.errors import PaymentInitiationFailed
from clinic_scheduling.models.booking import Booking
from clinic_scheduling.services.booking_store import utc_naive_now

logger = logging.getLogger(__name__)


@dataclass
class PaymentInitiation:
    reference: str
    authorization_url: str


class PaymentCollaborator(Protocol):
    async def initiate(self, booking: Booking, email: str) -> PaymentInitiation: ...


def make_reference(booking_id: int) -> str:
    return f"appt_{booking_id}_{int(time.time() * 1000)}"


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class PaystackPaymentCollaborator:
    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        callback_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.callback_url = callback_url if callback_url is not None else settings.payment_callback_url
        self._client = client

    async def initiate(self, booking: Booking, email: str) -> PaymentInitiation:
        if not self.secret_key:
            logger.warning("Payment gateway not configured; cannot initiate booking %s", booking.id)
            raise PaymentInitiationFailed("Payments are not configured.")

        reference = make_reference(booking.id)
        body = {
            "amount": to_minor_units(booking.amount),
            "email": email,
            "reference": reference,
            "currency": booking.currency,
        }
        if self.callback_url:
            body["callback_url"] = self.callback_url

        try:
            if self._client is not None:
                resp = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=settings.payment_timeout_seconds) as client:
                    resp = await self._post(client, body)
        except httpx.HTTPError as exc:
            logger.warning("Payment initiation for booking %s failed: %s", booking.id, exc)
            raise PaymentInitiationFailed() from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code != 200 or not data.get("status"):
            logger.warning(
                "Payment gateway rejected booking %s: status=%s body=%s",
                booking.id, resp.status_code, resp.text[:500],
            )
            raise PaymentInitiationFailed()
        authorization_url = (data.get("data") or {}).get("authorization_url")
        if not authorization_url:
            logger.warning("Payment gateway returned no authorization_url for booking %s", booking.id)
            raise PaymentInitiationFailed()
        return PaymentInitiation(reference=reference, authorization_url=authorization_url)

    async def _post(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        return await client.post(
            f"{self.base_url}/transaction/initialize",
            json=body,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )


async def record_payment_reference(
    session: AsyncSession, booking: Booking, initiation: PaymentInitiation
) -> Booking:
    booking.payment_reference = initiation.reference
    booking.updated_at = utc_naive_now()
    with store_errors("record_payment_reference"):
        session.add(booking)
        await session.commit()
    return booking
