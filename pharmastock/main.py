from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging

from pharmastock.config import settings
from pharmastock.database import db
from pharmastock.errors import (
    InsufficientStock,
    InvalidStateTransition,
    InventoryError,
    PersistenceFailure,
    ReferenceNotFound,
    ValidationError,
)
from pharmastock.api import purchase_orders, stock

# Setup Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Typed failures -> HTTP status
ERROR_STATUS = [
    (ValidationError, 400),
    (ReferenceNotFound, 404),
    (InvalidStateTransition, 409),
    (InsufficientStock, 409),
    (PersistenceFailure, 503),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.connect()
    yield
    db.close()


app = FastAPI(
    title="PharmaStock API",
    description="Purchase order workflow and batch stock ledger",
    version="1.0.0",
    lifespan=lifespan
)

# CORS Config
origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]
if settings.CORS_ORIGINS:
    origins.extend(o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


# Router Registration
app.include_router(purchase_orders.router)
app.include_router(stock.router)

# Health Check
@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

if __name__ == "__main__":
    uvicorn.run("pharmastock.main:app", host="0.0.0.0", port=8000, reload=True)
