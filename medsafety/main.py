"""
MedSafety - Main FastAPI Application
Medication safety rule evaluation and alert aggregation service
"""

import logging
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from medsafety.config import settings
from medsafety.knowledge.conditions import default_classifier
from medsafety.knowledge.drug_knowledge import default_knowledge_base
from medsafety.routes import safety as safety_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# =============================================================================
# Application Lifecycle
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting MedSafety application...")
    logger.info(f"Environment: {settings.environment}")
    enabled = [name for name, on in settings.enabled_rule_flags.items() if on]
    logger.info(f"Enabled rule modules: {', '.join(enabled)}")

    # Knowledge tables are built once and shared read-only
    knowledge = default_knowledge_base()
    stats = knowledge.stats()
    logger.info(
        f"Knowledge base ready: {stats['total_drugs']} drugs, "
        f"{stats['with_acb_score']} with ACB scores"
    )
    classifier = default_classifier()
    logger.info(f"Condition classifier ready: {len(classifier.condition_keys)} conditions")

    yield

    # Shutdown
    logger.info("Shutting down MedSafety application...")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="MedSafety",
    description="Medication safety rule evaluation and alert aggregation engine",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(safety_routes.router)


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness plus the rule modules this instance will run"""
    return {
        "status": "healthy",
        "version": VERSION,
        "rule_modules": [name for name, on in settings.enabled_rule_flags.items() if on],
        "timestamp": datetime.now().isoformat()
    }


@app.get("/health/ready", tags=["health"])
async def readiness_check():
    """Ready once the knowledge base and condition classifier are cached"""
    loaded = {
        "knowledge_loaded": default_knowledge_base.cache_info().currsize > 0,
        "classifier_loaded": default_classifier.cache_info().currsize > 0
    }
    if not all(loaded.values()):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge tables not loaded"
        )
    return {"status": "ready", **loaded}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Route errors as {"error", "path", "timestamp"}"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "path": request.url.path,
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": str(exc) if settings.debug else "Internal server error",
            "path": request.url.path,
            "timestamp": datetime.now().isoformat()
        }
    )


if __name__ == "__main__":
    uvicorn.run(
        "medsafety.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )
