import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from villa_onboarding.config import settings
from villa_onboarding.middleware.exceptions import register_exception_handlers
from villa_onboarding.routers import health, onboarding

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Villa Onboarding",
    description="Onboarding progress tracking for the villa setup wizard",
    version="0.1.0",
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(onboarding.router, prefix="/api/onboarding", tags=["onboarding"])
