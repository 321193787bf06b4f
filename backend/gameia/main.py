# backend/gameia/main.py
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .apps.accounts.router_admin import router as accounts_admin_router
from .apps.accounts.router_public import router as accounts_public_router
from .apps.assessments.router import router as assessments_router
from .apps.audit.router import router as audit_router
from .apps.certificates.router import router as certificates_router
from .apps.events.broker import broker
from .apps.events.router import router as events_router
from .apps.gamification.router import router as gamification_router
from .apps.next_steps.router import router as next_steps_router
from .apps.notifications.router import router as notifications_router
from .apps.organizations.router import router as organizations_router
from .apps.pdi.router import router as pdi_router
from .apps.scenarios.router import router as scenarios_router
from .apps.training.router import router as training_router

# Vite dev server and the preview build.
DEV_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:8080"]

ROUTERS = (
    accounts_public_router,
    accounts_admin_router,
    organizations_router,
    gamification_router,
    training_router,
    certificates_router,
    notifications_router,
    next_steps_router,
    assessments_router,
    pdi_router,
    scenarios_router,
    audit_router,
    events_router,
)


def _allowed_origins() -> List[str]:
    """Comma-separated CORS_ALLOWED_ORIGINS, or the local dev servers."""
    origins = [o.strip() for o in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",") if o.strip()]
    return origins or list(DEV_ORIGINS)


def create_app() -> FastAPI:
    application = FastAPI(title="Gameia API", version="1.0.0")
    origins = _allowed_origins()
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers refuse credentialed requests to a wildcard origin.
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    for router in ROUTERS:
        application.include_router(router)
    return application


app = create_app()


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Gameia backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok", "realtime_subscribers": broker.subscriber_count()}
