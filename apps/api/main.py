"""
Website Health Audit - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, audit
from services.audit_queue import recover_stalled_audits, supervisor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

SHUTDOWN_DRAIN_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Website Health Audit API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_audits()
        if recovered:
            print(f"♻️ Recovered {recovered} stalled audits after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled audit recovery skipped: {exc}")
    yield
    # Shutdown
    if supervisor.active_count:
        print(f"⏳ Waiting for {supervisor.active_count} in-flight audits...")
        await supervisor.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await supervisor.shutdown()
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Website Health Audit API",
    description="Audit website performance, meta tags and images and get actionable recommendations",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(audit.router, prefix="/audit", tags=["Audit"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Website Health Audit API",
        "version": "0.1.0",
        "status": "running"
    }
