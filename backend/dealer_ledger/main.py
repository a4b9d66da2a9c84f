"""
Main FastAPI Application
"""
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from dealer_ledger.core.config import settings
from dealer_ledger.core.database import init_db, SessionLocal
from dealer_ledger.core.exceptions import (
    LedgerError,
    ledger_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from dealer_ledger.api.v1 import accounting, payroll, reports
from dealer_ledger.services.chart_service import seed_default_chart

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting up...")
    init_db()

    if settings.SEED_DEFAULT_CHART:
        db = SessionLocal()
        try:
            seed_default_chart(db)
        finally:
            db.close()

    logger.info("Database initialized")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
app.add_exception_handler(LedgerError, ledger_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


app.include_router(accounting.router, prefix="/api/v1")
app.include_router(payroll.router, prefix="/api/v1")
app.include_router(reports.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
