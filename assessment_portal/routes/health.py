"""
Health check and monitoring endpoints.
"""
import time
import logging
from fastapi import APIRouter
from assessment_portal.db import check_database_health
from assessment_portal.services.email import get_sendgrid_client
from assessment_portal.core.settings import settings

logger = logging.getLogger("assessment_portal.health")
router = APIRouter()

@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "version": "1.0.0"
    }

@router.get("/detailed")
async def detailed_health_check():
    """Detailed health check with service status."""
    start_time = time.time()

    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "services": {}
    }

    try:
        db_health = await check_database_health()
        health_status["services"]["database"] = db_health
        if db_health["status"] != "healthy":
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    health_status["services"]["email"] = (
        {"status": "configured", "provider": "sendgrid"}
        if get_sendgrid_client()
        else {"status": "not_configured", "note": "Email sending disabled"}
    )

    # Configuration only; the service is never called from a health probe
    health_status["services"]["psychometric_analysis"] = {
        "status": "configured" if settings.analysis_api_url else "not_configured",
        "timeout_seconds": settings.analysis_timeout_seconds,
    }

    health_status["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
    return health_status

@router.get("/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"status": "alive", "timestamp": time.time()}
