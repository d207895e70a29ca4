"""
DH CRM - API Backend
Clients, opportunités, plans CSKH, khảo sát, báo giá

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
import logging

from config import db, CORS_ORIGINS
from services.errors import CRMError, CollaboratorError

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("dh_crm")

# Créer l'app
app = FastAPI(
    title="DH CRM",
    description="CRM: khách hàng, cơ hội, chăm sóc, khảo sát, báo giá",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERREURS ====================

@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    if isinstance(exc, CollaboratorError):
        logger.error(f"[API] {request.method} {request.url.path} collaborator failure: {exc.cause!r}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(PyMongoError)
async def mongo_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"[API] {request.method} {request.url.path} database error: {exc!r}")
    return JSONResponse(status_code=500, content={"detail": CollaboratorError().detail})


# ==================== IMPORT DES ROUTES ====================

from routes import auth, customers, opportunities, customer_care, surveys, quotations, catalog, media

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(customers.router, prefix="/api")
app.include_router(opportunities.router, prefix="/api")
app.include_router(customer_care.router, prefix="/api")
app.include_router(surveys.router, prefix="/api")
app.include_router(quotations.router, prefix="/api")
app.include_router(catalog.router, prefix="/api")
app.include_router(media.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "DH CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== INDEX ====================

async def ensure_indexes():
    """Index uniques: dernier rempart contre les codes en double"""
    await db.users.create_index("username", unique=True)
    await db.sessions.create_index("token", unique=True)
    await db.sessions.create_index("expires_at")
    await db.counters.create_index("key", unique=True)
    await db.customers.create_index("customerId", unique=True)
    await db.customers.create_index("phone")
    await db.opportunities.create_index("opportunityNo", unique=True)
    await db.quotations.create_index("quotationNo", unique=True)
    await db.quotations.create_index("surveyRef")
    await db.customer_care.create_index("careId", unique=True)
    await db.surveys.create_index("surveyNo", unique=True)
    await db.service_packages.create_index("code", unique=True)
    await db.services.create_index("code", unique=True)
    await db.service_pricing.create_index([("serviceName", 1), ("packageName", 1)])
    await db.event_log.create_index("entity_id")


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    await ensure_indexes()
    logger.info("[STARTUP] DH CRM started, MongoDB indexes ready")


@app.on_event("shutdown")
async def shutdown_db_client():
    from config import client
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
