"""
Main FastAPI application for the material payments API.
Serves purchases, webhooks, downloads, health and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import register_error_handlers
from app.api.routes import downloads, health, materials, payments, purchases, webhooks
from app.core.config import settings
from app.core.logging import configure_logging
from app.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title="Material Payments API",
    description="Payments, entitlements and secure downloads for paid materials",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")
app.include_router(purchases.router, prefix="/api")
app.include_router(materials.router, prefix="/api")
app.include_router(downloads.router, prefix="/api")
app.include_router(metrics_router)
