"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from domain.ticket import PaymentStatus, Ticket
from services.checkin_service import ScanResult


# ============================================================================
# Quote Models
# ============================================================================

class QuoteRequest(BaseModel):
    """Request to price a purchase without reserving anything."""
    event_id: str
    quantity: int = Field(..., description="Number of tickets (1-10)")
    promo_code: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "8b0c6a9e-6f1d-4c53-9a57-0c1f3f1f6f10",
                "quantity": 2,
                "promo_code": "EARLYBIRD"
            }
        }


class QuoteResponse(BaseModel):
    """Price breakdown for a purchase."""
    event_id: str
    quantity: int
    subtotal: Decimal
    discount_applied: Decimal
    total: Decimal
    currency: str
    remaining: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "8b0c6a9e-6f1d-4c53-9a57-0c1f3f1f6f10",
                "quantity": 2,
                "subtotal": "2000.00",
                "discount_applied": "200.00",
                "total": "1800.00",
                "currency": "KES",
                "remaining": 48
            }
        }


# ============================================================================
# Purchase Models
# ============================================================================

class PurchaseRequest(BaseModel):
    """Request to buy tickets and start M-Pesa payment."""
    event_id: str
    buyer_name: str = Field(..., description="Name printed on the ticket")
    buyer_email: str = Field(..., description="Where the ticket is sent")
    buyer_phone: str = Field(..., description="M-Pesa number, e.g. 0712345678 or 254712345678")
    quantity: int = Field(..., description="Number of tickets (1-10)")
    promo_code: Optional[str] = None
    user_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "8b0c6a9e-6f1d-4c53-9a57-0c1f3f1f6f10",
                "buyer_name": "Wanjiru Kamau",
                "buyer_email": "wanjiru@example.com",
                "buyer_phone": "0712345678",
                "quantity": 2,
                "promo_code": "EARLYBIRD"
            }
        }


class PurchaseResponse(BaseModel):
    """Response for an accepted purchase. Payment is still in progress."""
    ticket_id: str
    payment_status: str
    processing: bool
    subtotal: Decimal
    discount_applied: Decimal
    total: Decimal
    currency: str
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "ticket_id": "TKT-3F9A1C07B2D4E658",
                "payment_status": "pending",
                "processing": True,
                "subtotal": "2000.00",
                "discount_applied": "200.00",
                "total": "1800.00",
                "currency": "KES",
                "message": "Check your phone to authorise the M-Pesa payment."
            }
        }


# ============================================================================
# Ticket Models
# ============================================================================

class PaymentStatusResponse(BaseModel):
    """Current payment state of a ticket."""
    ticket_id: str
    payment_status: str
    status: str
    receipt_number: Optional[str] = None
    transaction_id: Optional[str] = None
    simulated: bool = False
    failure_reason: Optional[str] = None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "PaymentStatusResponse":
        return cls(
            ticket_id=ticket.ticket_id,
            payment_status=ticket.payment_status.value,
            status=ticket.status.value,
            receipt_number=ticket.receipt_number,
            transaction_id=ticket.transaction_id,
            simulated=ticket.is_simulated,
            failure_reason=ticket.failure_reason,
        )


class TicketResponse(BaseModel):
    """Ticket view for buyers and staff."""
    ticket_id: str
    event_id: str
    buyer_name: str
    buyer_email: str
    quantity: int
    total_amount: Decimal
    discount_applied: Decimal
    promo_code: Optional[str] = None
    payment_status: str
    status: str
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    receipt_number: Optional[str] = None
    qr_token: Optional[str] = None
    transferred_to: Optional[str] = None
    transferred_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    simulated: bool = False
    created_at: datetime

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            ticket_id=ticket.ticket_id,
            event_id=ticket.event_id,
            buyer_name=ticket.buyer_name,
            buyer_email=ticket.buyer_email,
            quantity=ticket.quantity,
            total_amount=ticket.total_amount,
            discount_applied=ticket.discount_applied,
            promo_code=ticket.promo_code,
            payment_status=ticket.payment_status.value,
            status=ticket.status.value,
            checked_in=ticket.checked_in,
            checked_in_at=ticket.checked_in_at,
            receipt_number=ticket.receipt_number,
            # The scan payload is only useful once the ticket is paid for.
            qr_token=ticket.qr_token if ticket.payment_status is PaymentStatus.COMPLETED else None,
            transferred_to=ticket.transferred_to,
            transferred_at=ticket.transferred_at,
            revoked_at=ticket.revoked_at,
            simulated=ticket.is_simulated,
            created_at=ticket.created_at,
        )


class TransferRequest(BaseModel):
    """Request to transfer a ticket to another person."""
    holder_email: str = Field(..., description="Email the ticket was bought with")
    recipient_email: str

    class Config:
        json_schema_extra = {
            "example": {
                "holder_email": "wanjiru@example.com",
                "recipient_email": "otieno@example.com"
            }
        }


# ============================================================================
# Check-in Models
# ============================================================================

class ScanRequest(BaseModel):
    """A scanned QR payload or a manually typed ticket id."""
    payload: str = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "payload": "TKT-3F9A1C07B2D4E658-8b0c6a9e-6f1d-4c53-9a57-0c1f3f1f6f10-4be1f0c2a9d35e7f8a61"
            }
        }


class ScanResponse(BaseModel):
    """Classification shown to staff after a scan."""
    ticket_id: str
    classification: str
    can_check_in: bool
    buyer_name: Optional[str] = None
    quantity: Optional[int] = None
    event_id: Optional[str] = None
    checked_in_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: ScanResult) -> "ScanResponse":
        ticket = result.ticket
        return cls(
            ticket_id=result.ticket_id,
            classification=result.classification.value,
            can_check_in=result.can_check_in,
            buyer_name=ticket.buyer_name if ticket else None,
            quantity=ticket.quantity if ticket else None,
            event_id=ticket.event_id if ticket else None,
            checked_in_at=ticket.checked_in_at if ticket else None,
        )


class CheckInResponse(BaseModel):
    """Result of a confirmed check-in."""
    ticket_id: str
    status: str
    checked_in_at: datetime
    message: str = "Checked in"
