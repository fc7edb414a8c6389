"""
Event Ticketing API - Main Application.

FastAPI application with CORS enabled for frontend communication.
Services are wired from the environment on first request unless passed to
`create_app` explicitly.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.dependencies import TicketingServices
from api.errors import register_exception_handlers
from config import Settings, configure_logging


def create_app(services: Optional[TicketingServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        current = getattr(app.state, "services", None)
        if current is not None:
            await current.aclose()

    app = FastAPI(
        title="Event Ticketing API",
        description="Ticket sales with M-Pesa payment reconciliation and staff check-in",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # TODO: Restrict origins to the ticketing frontend once its domain is fixed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "event-ticketing-api"
        }

    @app.get("/", tags=["Root"])
    def root():
        """
        Root endpoint with API information.
        """
        return {
            "message": "Event Ticketing API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health"
        }

    from api.routers import checkin, payments, purchases, quotes, tickets

    app.include_router(quotes.router, prefix="/api/v1", tags=["Quotes"])
    app.include_router(purchases.router, prefix="/api/v1", tags=["Purchases"])
    app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
    app.include_router(tickets.router, prefix="/api/v1", tags=["Tickets"])
    app.include_router(checkin.router, prefix="/api/v1", tags=["Check-in"])

    return app


configure_logging(Settings.from_env().log_level)

app = create_app()
