"""
SiteDesk Web API

FastAPI backend for the SiteDesk console.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitedesk.config import configure_logging, load_config
from web.api.deps import close_services, init_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    config = load_config()
    configure_logging(config)
    init_services(config)
    yield
    await close_services()


app = FastAPI(
    title="SiteDesk API",
    description="API for the SiteDesk member administration console",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend (development)
cors_origins = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and include routers after app is created
from web.api.routers import jobs, sites  # noqa: E402

app.include_router(sites.router, prefix="/api/sites", tags=["sites"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "sitedesk-api"}
