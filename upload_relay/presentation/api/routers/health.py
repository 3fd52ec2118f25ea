"""
Health check API endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ....application.container import IContainer
from ....core.interfaces.lifecycle import IComponent
from ....core.interfaces.messaging import IMessageBridge
from ....core.interfaces.storage import IAttachmentRegistry, ISignedUrlBroker
from ....core.interfaces.upload import IUploadSessionManager
from ....infrastructure.config.models import ApplicationConfig
from ..dependencies import get_config, get_container

router = APIRouter()

ESSENTIAL_SERVICES = (
    IAttachmentRegistry,
    ISignedUrlBroker,
    IMessageBridge,
    IUploadSessionManager,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _application_info(config: ApplicationConfig) -> Dict[str, Any]:
    return {
        "name": config.name,
        "version": config.version,
        "environment": config.environment
    }


@router.get("/")
async def health_check(config: ApplicationConfig = Depends(get_config)) -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": _now(),
        "application": _application_info(config)
    }


@router.get("/detailed")
async def detailed_health_check(
    container: IContainer = Depends(get_container),
    config: ApplicationConfig = Depends(get_config)
) -> Dict[str, Any]:
    """
    Detailed health check with component status.

    Every registered service that is a lifecycle component reports its own
    health; the application is ``degraded`` if any of them is unhealthy.
    """
    components_health: Dict[str, Any] = {}
    overall_healthy = True

    for service_type in container.get_registrations():
        component = container.try_resolve(service_type)
        if not isinstance(component, IComponent):
            continue

        try:
            health_info = await component.check_health()
        except Exception as e:
            health_info = {"healthy": False, "status": "error", "details": {"error": str(e)}}

        components_health[component.name] = health_info
        if not health_info.get("healthy", True):
            overall_healthy = False

    return {
        "status": "healthy" if overall_healthy else "degraded",
        "timestamp": _now(),
        "application": _application_info(config),
        "components": components_health
    }


@router.get("/ready")
async def readiness_check(container: IContainer = Depends(get_container)) -> JSONResponse:
    """Readiness check: 503 until the essential services are registered."""
    missing: List[str] = [
        service.__name__ for service in ESSENTIAL_SERVICES
        if not container.is_registered(service)
    ]

    return JSONResponse(
        status_code=200 if not missing else 503,
        content={
            "ready": not missing,
            "timestamp": _now(),
            "missing_services": missing
        }
    )


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Liveness check endpoint."""
    return {
        "alive": True,
        "timestamp": _now()
    }
