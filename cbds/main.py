"""CBDS FastAPI application."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cbds.api.admin import router as admin_router
from cbds.api.compliance import router as compliance_router
from cbds.api.health import router as health_router
from cbds.api.integration import router as integration_router
from cbds.api.logistics import router as logistics_router
from cbds.api.tax import router as tax_router
from cbds.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="CBDS - Cross-Border Decisioning Service",
    description="Import tax, relief regime and multi-carrier shipping decisions for cross-border orders",
    version=settings.engine_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["Health"])
app.include_router(tax_router, prefix="/v1", tags=["Tax"])
app.include_router(compliance_router, prefix="/v1", tags=["Compliance"])
app.include_router(logistics_router, prefix="/v1", tags=["Logistics"])
app.include_router(integration_router, prefix="/v1", tags=["Integrated Quotes"])
app.include_router(admin_router, prefix="/v1/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "CBDS", "version": settings.engine_version, "docs": "/docs"}
