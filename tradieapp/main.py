from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .auth.authenticator import DualAuthenticator
from .auth.router import router as auth_router
from .config import settings
from .db import Database
from .errors import register_exception_handlers
from .logging import RequestIdMiddleware, setup_logging
from .routes.clients import router as clients_router
from .routes.invoices import router as invoices_router
from .routes.organizations import router as organizations_router
from .routes.public import router as public_router
from .routes.quotes import router as quotes_router


def create_app(database: Optional[Database] = None, authenticator: Optional[DualAuthenticator] = None) -> FastAPI:
    setup_logging(settings.log_level)
    app = FastAPI(title=settings.app_name)

    app.state.db = database or Database(settings.database_url)
    app.state.authenticator = authenticator or DualAuthenticator()

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(organizations_router)
    app.include_router(clients_router)
    app.include_router(quotes_router)
    app.include_router(invoices_router)
    app.include_router(public_router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    # Metrics
    registry = CollectorRegistry()  # per app, several apps may share a process
    Instrumentator(registry=registry).instrument(app).expose(app, include_in_schema=False)

    @app.on_event("startup")
    def _startup():
        if settings.auto_create_db:
            app.state.db.create_all()

    @app.on_event("shutdown")
    def _shutdown():
        app.state.db.dispose()

    return app
