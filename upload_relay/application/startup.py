"""
Application startup and configuration logic.

This module registers every service with the DI container and starts and
stops the lifecycle components in dependency order.

The registered ``IFileBrowser`` starts with no elements. A standalone server
has no native file pickers, so ``open-file-browser`` is a logged no-op until
an embedding UI binds its pickers with
``container.resolve(IFileBrowser).register_element(element_id, picker)``.
"""

import logging
from typing import Any, List, Type

from .container import IContainer
from ..core.domain.attachments import (
    BodyEncoding, ResponseFormat, UploadDestination, UploadMethod
)
from ..core.interfaces.lifecycle import IComponent, IStartable, IStoppable
from ..core.interfaces.messaging import ICommandDispatcher, IMessageBridge
from ..core.interfaces.storage import IAttachmentRegistry, IObjectStore, ISignedUrlBroker
from ..core.interfaces.upload import (
    IFileBrowser, IFileContentReader, IUploadSessionManager, IUploadTransport
)
from ..infrastructure.config.models import ApplicationConfig
from ..infrastructure.logging.setup import LoggingManager

logger = logging.getLogger(__name__)


def default_destination(config: ApplicationConfig) -> UploadDestination:
    """
    Destination settings applied to upload commands that only name a URL.

    Its own URL points at this server's multipart ``POST /attachments``.
    """
    upload = config.upload
    return UploadDestination(
        url=f"{config.server.base_url}/attachments",
        method=UploadMethod(upload.default_method.upper()),
        body_encoding=BodyEncoding(upload.default_body_encoding),
        response_format=ResponseFormat(upload.default_response_format),
    )


class ApplicationStartup:
    """
    Manages application startup and service configuration.

    Registers services with the DI container, then starts the lifecycle
    components in order and stops them in reverse.
    """

    def __init__(self, container: IContainer) -> None:
        self._container = container
        self._started_components: List[IComponent] = []
        self._startup_order: List[Type[Any]] = [
            LoggingManager,
            ICommandDispatcher,
            IMessageBridge,
            IUploadTransport,
            IUploadSessionManager,
            ISignedUrlBroker,
        ]

    @property
    def started_components(self) -> List[IComponent]:
        return list(self._started_components)

    async def configure_services(self, config: ApplicationConfig) -> None:
        """
        Configure and register all application services.

        Raises:
            StoreUnavailable: If the object store is misconfigured
        """
        logger.info("Configuring application services...")

        self._container.register_instance(ApplicationConfig, config)
        self._container.register_instance(LoggingManager, LoggingManager(config.logging))

        self._register_storage_services(config)
        self._register_bridge_services(config)
        self._register_upload_services(config)

        logger.info("Service configuration completed")

    def _register_storage_services(self, config: ApplicationConfig) -> None:
        from ..infrastructure.storage import (
            InMemoryAttachmentRegistry, SignedUrlBroker, build_object_store
        )

        registry = InMemoryAttachmentRegistry()
        store = build_object_store(config.storage, config.server.base_url)
        broker = SignedUrlBroker(
            registry, store, expire_seconds=config.storage.signed_url_expire_seconds)

        self._container.register_instance(IAttachmentRegistry, registry)  # type: ignore[type-abstract]
        self._container.register_instance(IObjectStore, store)  # type: ignore[type-abstract]
        self._container.register_instance(ISignedUrlBroker, broker)  # type: ignore[type-abstract]

        logger.debug(f"Registered storage services ({config.storage.backend} backend)")

    def _register_bridge_services(self, config: ApplicationConfig) -> None:
        from ..core.services import CommandDispatcher, MessageBridge

        dispatcher = CommandDispatcher()
        bridge = MessageBridge(dispatcher, default_destination=default_destination(config))

        self._container.register_instance(ICommandDispatcher, dispatcher)  # type: ignore[type-abstract]
        self._container.register_instance(IMessageBridge, bridge)  # type: ignore[type-abstract]

        logger.debug("Registered message bridge services")

    def _register_upload_services(self, config: ApplicationConfig) -> None:
        from ..infrastructure.services.upload import (
            AiohttpUploadTransport, ElementFileBrowser, FileContentReader,
            UploadSessionManager
        )

        reader = FileContentReader(max_size=config.upload.max_file_size)
        transport = AiohttpUploadTransport(
            chunk_size=config.upload.chunk_size,
            request_timeout=config.upload.request_timeout
        )
        browser = ElementFileBrowser()
        manager = UploadSessionManager(
            bridge=self._container.resolve(IMessageBridge),  # type: ignore[type-abstract]
            reader=reader,
            transport=transport,
            file_browser=browser,
            accepted_statuses=config.upload.accepted_status_codes
        )
        manager.register_handlers(self._container.resolve(ICommandDispatcher))  # type: ignore[type-abstract]

        self._container.register_instance(IFileContentReader, reader)  # type: ignore[type-abstract]
        self._container.register_instance(IUploadTransport, transport)  # type: ignore[type-abstract]
        self._container.register_instance(IFileBrowser, browser)  # type: ignore[type-abstract]
        self._container.register_instance(IUploadSessionManager, manager)  # type: ignore[type-abstract]

        logger.debug("Registered upload services")

    async def start_application(self) -> None:
        """Start all application components in order."""
        logger.info("Starting application components...")

        for service_type in self._startup_order:
            component = self._container.try_resolve(service_type)
            if component is None or not isinstance(component, IStartable):
                continue

            try:
                await component.start()
            except Exception as e:
                logger.error(f"Failed to start component {service_type.__name__}: {e}")
                await self.stop_application()
                raise

            if isinstance(component, IComponent):
                self._started_components.append(component)
                logger.debug(f"Started component: {component.name}")

        logger.info("Application startup completed successfully")

    async def stop_application(self) -> None:
        """Stop all started components in reverse order."""
        logger.info("Stopping application components...")

        for component in reversed(self._started_components):
            try:
                if isinstance(component, IStoppable):
                    await component.stop()
                    logger.debug(f"Stopped component: {component.name}")
            except Exception as e:
                # Keep stopping the remaining components
                logger.error(f"Error stopping component {component.name}: {e}")

        self._started_components.clear()
        logger.info("Application shutdown completed")
