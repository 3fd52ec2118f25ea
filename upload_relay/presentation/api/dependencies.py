"""
FastAPI dependency injection utilities.

Route handlers reach application services through the container stored on
``app.state``.
"""

from typing import Any, Callable, Type, TypeVar

from fastapi import Depends, HTTPException, Request, status

from ...application.container import IContainer
from ...core.interfaces.messaging import IMessageBridge
from ...core.interfaces.storage import IAttachmentRegistry, IObjectStore, ISignedUrlBroker
from ...core.interfaces.upload import IUploadSessionManager
from ...infrastructure.config.models import ApplicationConfig

T = TypeVar('T')


def get_container(request: Request) -> IContainer:
    """
    Get the dependency injection container from the request.

    Raises:
        HTTPException: If container is not available
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application container not available"
        )
    return container


def get_config(request: Request) -> ApplicationConfig:
    """
    Get the application configuration from the request.

    Raises:
        HTTPException: If configuration is not available
    """
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application configuration not available"
        )
    return config


def get_component(service_type: Type[T]) -> Callable[..., Any]:
    """
    Create a dependency function resolving a specific service type.

    Args:
        service_type: Type of service to resolve

    Returns:
        Dependency function that resolves the service
    """
    def _get_component(container: IContainer = Depends(get_container)) -> T:
        service = container.try_resolve(service_type)
        if service is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Service {service_type.__name__} not available"
            )
        return service

    return _get_component


get_registry = get_component(IAttachmentRegistry)  # type: ignore[type-abstract]
get_object_store = get_component(IObjectStore)  # type: ignore[type-abstract]
get_broker = get_component(ISignedUrlBroker)  # type: ignore[type-abstract]
get_message_bridge = get_component(IMessageBridge)  # type: ignore[type-abstract]
get_session_manager = get_component(IUploadSessionManager)  # type: ignore[type-abstract]
