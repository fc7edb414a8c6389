"""
Service wiring for the API.

`build_services` assembles stores, gateway, notifier and services from
Settings. The result is kept on `app.state.services`; routers receive it
through the `get_services` dependency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from config import Settings
from domain.role import Caller
from repositories.in_memory import (
    InMemoryEventRepository,
    InMemoryPromoCodeRepository,
    InMemoryRoleLookup,
    InMemoryTicketRepository,
)
from repositories.interfaces import EventRepository, PromoCodeRepository, RoleLookup, TicketRepository
from services.checkin_service import CheckInValidator
from services.inventory_service import InventoryService
from services.notification_service import LoggingNotifier, Notifier, ResendEmailNotifier
from services.payment_gateway import MpesaGateway, PaymentGateway, SimulatedGateway
from services.payment_service import PaymentOrchestrator
from services.promo_service import PromoCodeLedger
from services.purchase_service import PurchaseService
from services.reconciliation_service import ReconciliationScheduler
from services.ticket_state_machine import TicketStateMachine
from services.transfer_service import TicketTransferService

logger = logging.getLogger(__name__)


@dataclass
class TicketingServices:
    settings: Settings
    events: EventRepository
    promo_codes: PromoCodeRepository
    tickets: TicketRepository
    roles: RoleLookup
    inventory: InventoryService
    promo_ledger: PromoCodeLedger
    state_machine: TicketStateMachine
    orchestrator: PaymentOrchestrator
    scheduler: ReconciliationScheduler
    purchases: PurchaseService
    checkin: CheckInValidator
    transfers: TicketTransferService
    notifier: Notifier

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.orchestrator.aclose()
        if isinstance(self.notifier, ResendEmailNotifier):
            await self.notifier.aclose()


def _build_stores(settings: Settings):
    if settings.store == "memory":
        logger.warning("Using the in-memory store; data is lost on restart")
        return (
            InMemoryEventRepository(),
            InMemoryPromoCodeRepository(),
            InMemoryTicketRepository(),
            InMemoryRoleLookup(),
        )

    from repositories.client import create_supabase_client
    from repositories.event_repository import SupabaseEventRepository
    from repositories.promo_repository import SupabasePromoCodeRepository
    from repositories.role_repository import SupabaseRoleLookup
    from repositories.ticket_repository import SupabaseTicketRepository

    client = create_supabase_client(settings.supabase_url, settings.supabase_key)
    return (
        SupabaseEventRepository(client),
        SupabasePromoCodeRepository(client),
        SupabaseTicketRepository(client),
        SupabaseRoleLookup(client),
    )


def _build_gateway(settings: Settings) -> PaymentGateway:
    if not settings.mpesa_configured:
        logger.warning("M-Pesa credentials not configured; payments will be SIMULATED")
        return SimulatedGateway()
    if not settings.mpesa_callback_url:
        raise RuntimeError(
            "Missing environment variable: MPESA_CALLBACK_URL. "
            "Set it to the public URL of /api/v1/payments/mpesa/callback."
        )
    return MpesaGateway(
        consumer_key=settings.mpesa_consumer_key or "",
        consumer_secret=settings.mpesa_consumer_secret or "",
        business_shortcode=settings.mpesa_business_shortcode or "",
        passkey=settings.mpesa_passkey or "",
        callback_url=settings.mpesa_callback_url,
        base_url=settings.mpesa_base_url,
    )


def _build_notifier(settings: Settings) -> Notifier:
    if settings.resend_api_key:
        return ResendEmailNotifier(settings.resend_api_key, settings.ticket_email_from)
    return LoggingNotifier()


def build_services(
    settings: Settings,
    *,
    events: Optional[EventRepository] = None,
    promo_codes: Optional[PromoCodeRepository] = None,
    tickets: Optional[TicketRepository] = None,
    roles: Optional[RoleLookup] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[Notifier] = None,
) -> TicketingServices:
    """
    Wire every service from `settings`. Any collaborator passed explicitly
    replaces the one the settings would select.
    """
    if None in (events, promo_codes, tickets, roles):
        default_events, default_promos, default_tickets, default_roles = _build_stores(settings)
        events = events or default_events
        promo_codes = promo_codes or default_promos
        tickets = tickets or default_tickets
        roles = roles or default_roles

    gateway = gateway or _build_gateway(settings)
    notifier = notifier or _build_notifier(settings)

    promo_ledger = PromoCodeLedger(promo_codes)
    inventory = InventoryService(events, promo_ledger)
    state_machine = TicketStateMachine(tickets)
    orchestrator = PaymentOrchestrator(
        tickets,
        state_machine,
        inventory,
        promo_ledger,
        gateway,
        notifier=notifier,
        poll_policy=settings.poll_policy,
        simulated_settlement_delay=settings.simulated_settlement_delay,
    )
    scheduler = ReconciliationScheduler(orchestrator)

    return TicketingServices(
        settings=settings,
        events=events,
        promo_codes=promo_codes,
        tickets=tickets,
        roles=roles,
        inventory=inventory,
        promo_ledger=promo_ledger,
        state_machine=state_machine,
        orchestrator=orchestrator,
        scheduler=scheduler,
        purchases=PurchaseService(
            inventory, promo_ledger, orchestrator, settings.qr_token_secret, scheduler=scheduler
        ),
        checkin=CheckInValidator(roles, tickets, state_machine),
        transfers=TicketTransferService(tickets, state_machine),
        notifier=notifier,
    )


def get_services(request: Request) -> TicketingServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(Settings.from_env())
        request.app.state.services = services
    return services


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    services: TicketingServices = Depends(get_services),
) -> Optional[Caller]:
    """Resolve the caller's role for this request only."""

    return services.checkin.resolve_caller(x_user_id)


__all__ = ["TicketingServices", "build_services", "get_services", "get_caller"]
