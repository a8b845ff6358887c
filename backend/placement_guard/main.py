"""
Placement Guard - FastAPI Application

Main entry point for the Placement Guard backend.

Architecture:
- AccessLedger → DisclosureService (staged profiles, upgrades)
- ActivityMonitor → PatternDetector (message gating, behaviour flags)
- SuspiciousFlag → AlertEngine (immediate rules) → AccessLedger / EnforcementLedger
- AlertScheduler → AlertEngine (hourly / daily / weekly sweeps)
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import (
    access_router,
    messages_router,
    alerts_router,
    enforcement_router,
    scheduler_router,
)
from .database import init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Placement Guard",
    description="""
    Placement Guard - Access Control and Anti-Circumvention Engine

    Protects a recruitment platform's placements: employers see candidates
    through progressively disclosed profiles, messages are screened for
    off-platform contact, and hires made around the platform are billed.

    ## Trust Levels
    1. **Basic**: anonymised profile
    2. **Skills**: + education, skills, salary band (agreement signed)
    3. **Portfolio**: + work samples, watermarked video (payment on file)
    4. **Contact**: + email, phone, address (commitment accepted)

    ## Key Principles
    - Levels only move up through request-upgrade; restrictions only tighten
    - Blocked messages are never delivered unredacted
    - Message gating fails closed; activity tracking fails open
    - Fees and penalties are created once and never deleted
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(access_router)
app.include_router(messages_router)
app.include_router(alerts_router)
app.include_router(enforcement_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Placement Guard",
        "version": "1.0.0",
        "description": "Access Control and Anti-Circumvention Engine",
        "docs": "/docs",
        "components": {
            "disclosure": "Staged candidate profiles by trust level",
            "monitoring": "Message gating and behaviour heuristics",
            "alerts": "Rule-driven alerts and scheduled sweeps",
            "enforcement": "Success fees, bypass penalties, legal notices",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m placement_guard.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
