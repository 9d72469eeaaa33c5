"""
Pydantic schemas for the HTTP API.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from callqueue.queue.models import CleanupResult, QueueStats
from callqueue.telephony.phone import normalize_french_phone_number

DEFAULT_BRAND = "non renseignée"
DEFAULT_MODEL = "non renseigné"
DEFAULT_REGISTRATION = "non renseignée"


class Booking(BaseModel):
    date: str | None = Field(None, description="Inspection booking date as sent by the booking platform")
    backoffice_url: str | None = Field(None, description="Back-office page updated with the outcome")


class Order(BaseModel):
    reference: str | None = None


class Customer(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None


class Vehicule(BaseModel):
    brand: str | None = None
    model: str | None = None
    registration_number: str | None = None


class Center(BaseModel):
    phone: str | None = None
    affiliated_phone: str | None = None


class RefundRequestWebhook(BaseModel):
    """Refund request pushed by the booking platform.

    The five sections are mandatory (422 when absent); missing fields inside
    them are reported together by ``missing_fields``.
    """

    booking: Booking
    order: Order
    customer: Customer
    vehicule: Vehicule
    center: Center

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.order.reference:
            missing.append("order.reference")
        if not self.customer.first_name:
            missing.append("customer.first_name")
        if not self.customer.last_name:
            missing.append("customer.last_name")
        if not self.booking.date:
            missing.append("booking.date")
        if not self.center.phone and not self.center.affiliated_phone:
            missing.append("center.phone or center.affiliated_phone")
        return missing

    def to_queue_payload(self) -> dict[str, Any]:
        """Normalized payload stored on the queue item."""
        raw_phone = self.center.phone or self.center.affiliated_phone
        return {
            "reference": self.order.reference,
            "customer_name": f"{self.customer.first_name} {self.customer.last_name}",
            "booking_date": self.booking.date,
            "vehicle_brand": self.vehicule.brand or DEFAULT_BRAND,
            "vehicle_model": self.vehicule.model or DEFAULT_MODEL,
            "registration_number": self.vehicule.registration_number or DEFAULT_REGISTRATION,
            "center_phone": normalize_french_phone_number(raw_phone),
            "center_phone_raw": raw_phone,
            "backoffice_url": self.booking.backoffice_url,
        }


class RefundRequestAccepted(BaseModel):
    success: bool = True
    message: str = "Refund request queued"
    queue_id: str
    reference: str
    scheduled_for: datetime
    scheduled_for_local: str = Field(..., description="DD/MM/YYYY HH:MM in the business timezone")


class PostCallResponse(BaseModel):
    success: bool = True
    queue_id: str
    conversation_id: str
    call_status: str
    result: str | None = None
    transition: str
    next_attempt: datetime | None = None


class ConversationStatusResponse(BaseModel):
    success: bool = True
    conversation_id: str
    status: str
    call_status: str
    result: str | None = None
    refund_response: dict[str, Any] | None = None
    duration_seconds: float = 0.0


class QueueStatsResponse(BaseModel):
    success: bool = True
    stats: QueueStats


class CleanupResponse(BaseModel):
    success: bool = True
    result: CleanupResult


class HealthResponse(BaseModel):
    success: bool = True
    configured: bool
    missing_variables: list[str] = Field(default_factory=list)
    agent: dict[str, Any] | None = None
    business_hours: bool
    next_business_time: datetime
