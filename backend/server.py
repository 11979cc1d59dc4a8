"""
Chantiers Console - API Backend

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

import config
from services.errors import NotFoundError, TransientStoreError, ValidationError

# Configuration logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("chantiers")

# Créer l'app
app = FastAPI(
    title="Chantiers Console",
    description="Back-office de suivi des chantiers",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS.split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERREURS MÉTIER ====================

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(TransientStoreError)
async def store_error_handler(request: Request, exc: TransientStoreError):
    logger.error(f"Store indisponible sur {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Base de données indisponible, réessayez"})


# ==================== IMPORT DES ROUTES ====================

from routes import chantiers  # noqa: E402

app.include_router(chantiers.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Chantiers Console API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== CYCLE DE VIE ====================

scheduler = None


@app.on_event("startup")
async def start_scheduler():
    global scheduler
    if not config.STATUS_REFRESH_ENABLED:
        logger.info("Recalcul planifié des statuts désactivé")
        return
    from scheduler_service import TaskScheduler
    scheduler = TaskScheduler(config.db)
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_db_client():
    if scheduler is not None:
        scheduler.stop()
    config.client.close()
