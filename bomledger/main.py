from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from bomledger.core.config import settings
from bomledger.core.errors import InventoryError
from bomledger.core.observability import (
    http_exception_handler,
    inventory_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from bomledger.db.session import engine
from bomledger.routers import bom_versions, company, components, drafts, locations, lots, skus, transactions

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Multi-tenant inventory ledger with versioned bills of materials.\n\n"
        "Swagger quick test flow:\n"
        "1. Send `X-Company-Id`, `X-User-Id` and `X-User-Role` (admin|ops|viewer) on every call.\n"
        "2. Create a location, components and a SKU with an active BOM version.\n"
        "3. Post receipts, then builds (`/transactions/build`) or stage them as `/drafts`."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "company", "description": "Tenant inventory policy settings."},
        {"name": "locations", "description": "Stocking locations and the tenant default."},
        {"name": "components", "description": "Component catalog, stock by location and lots."},
        {"name": "skus", "description": "Finished-good SKUs and buildable units."},
        {"name": "bom", "description": "Versioned bills of materials with effective date ranges."},
        {"name": "lots", "description": "Lot balances, expiry status and traceability."},
        {"name": "transactions", "description": "Builds, receipts, adjustments, opening balances and transfers."},
        {"name": "drafts", "description": "Staged transactions and the approval workflow."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(InventoryError, inventory_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-API-Timeout-Hint-Ms"],
)

app.include_router(company.router)
app.include_router(locations.router)
app.include_router(components.router)
app.include_router(skus.router)
app.include_router(bom_versions.router)
app.include_router(lots.router)
app.include_router(transactions.router)
app.include_router(drafts.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
