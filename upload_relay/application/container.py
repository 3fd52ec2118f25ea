"""
Dependency injection container for wiring the upload relay's services.

Services are registered against an interface (or any key type) as an
instance, a factory or a class. Classes get their constructor parameters
resolved from the container by type hint.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union, get_type_hints

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ServiceLifetime(Enum):
    """Service lifetime management options."""
    SINGLETON = auto()  # One instance for the application
    TRANSIENT = auto()  # New instance per resolution


class ServiceNotRegisteredException(Exception):
    """Raised when trying to resolve an unregistered service."""
    pass


class ServiceResolutionException(Exception):
    """Raised when service resolution fails."""
    pass


class CircularDependencyException(Exception):
    """Raised when circular dependencies are detected."""
    pass


class ServiceRegistration:
    """Registration information for a service."""

    def __init__(self,
                 service_type: Type[Any],
                 implementation: Any,
                 lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
                 is_instance: bool = False):
        self.service_type = service_type
        self.implementation = implementation
        self.lifetime = ServiceLifetime.SINGLETON if is_instance else lifetime
        self.instance: Optional[Any] = implementation if is_instance else None


class IContainer(ABC):
    """Interface for dependency injection containers."""

    @abstractmethod
    def register(self,
                 service_type: Type[T],
                 implementation: Union[Type[T], Callable[[], T]],
                 lifetime: ServiceLifetime = ServiceLifetime.SINGLETON) -> None:
        """Register a class or a zero-argument factory for a service type."""
        pass

    @abstractmethod
    def register_instance(self, service_type: Type[T], instance: T) -> None:
        """Register an existing instance as a singleton."""
        pass

    @abstractmethod
    def resolve(self, service_type: Type[T]) -> T:
        """
        Resolve a service instance.

        Raises:
            ServiceNotRegisteredException: If service not registered
            ServiceResolutionException: If service cannot be created
            CircularDependencyException: If the dependency graph has a cycle
        """
        pass

    @abstractmethod
    def try_resolve(self, service_type: Type[T]) -> Optional[T]:
        """Resolve a service, returning None when it is not available."""
        pass

    @abstractmethod
    def is_registered(self, service_type: Type[Any]) -> bool:
        pass

    @abstractmethod
    def get_registrations(self) -> Dict[Type[Any], 'ServiceRegistration']:
        """Get all service registrations."""
        pass


def _unwrap_optional(annotation: Any) -> Any:
    if getattr(annotation, '__origin__', None) is Union:
        args = [arg for arg in annotation.__args__ if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


class Container(IContainer):
    """
    Lightweight dependency injection container.

    Supports constructor injection, singleton and transient lifetimes, and
    circular dependency detection.
    """

    def __init__(self) -> None:
        self._services: Dict[Type[Any], ServiceRegistration] = {}
        self._resolution_stack: List[Type[Any]] = []

    def register(self,
                 service_type: Type[T],
                 implementation: Union[Type[T], Callable[[], T]],
                 lifetime: ServiceLifetime = ServiceLifetime.SINGLETON) -> None:
        if not callable(implementation):
            raise TypeError(
                f"Implementation for {service_type.__name__} must be a class or a factory; "
                "use register_instance for instances")

        self._services[service_type] = ServiceRegistration(service_type, implementation, lifetime)
        logger.debug(f"Registered {service_type.__name__} with {lifetime.name} lifetime")

    def register_instance(self, service_type: Type[T], instance: T) -> None:
        self._services[service_type] = ServiceRegistration(
            service_type, instance, is_instance=True)
        logger.debug(f"Registered instance of {type(instance).__name__} as {service_type.__name__}")

    def resolve(self, service_type: Type[T]) -> T:
        if service_type in self._resolution_stack:
            cycle = " -> ".join([t.__name__ for t in self._resolution_stack] +
                                [service_type.__name__])
            raise CircularDependencyException(f"Circular dependency detected: {cycle}")

        registration = self._services.get(service_type)
        if registration is None:
            raise ServiceNotRegisteredException(
                f"Service {service_type.__name__} is not registered")

        if registration.lifetime is ServiceLifetime.SINGLETON and registration.instance is not None:
            return registration.instance  # type: ignore[no-any-return]

        self._resolution_stack.append(service_type)
        try:
            instance = self._create_instance(registration)
        except (CircularDependencyException, ServiceNotRegisteredException):
            raise
        except Exception as e:
            raise ServiceResolutionException(
                f"Failed to resolve {service_type.__name__}: {e}") from e
        finally:
            self._resolution_stack.pop()

        if registration.lifetime is ServiceLifetime.SINGLETON:
            registration.instance = instance
        return instance  # type: ignore[no-any-return]

    def try_resolve(self, service_type: Type[T]) -> Optional[T]:
        try:
            return self.resolve(service_type)
        except (ServiceNotRegisteredException, ServiceResolutionException,
                CircularDependencyException):
            return None

    def is_registered(self, service_type: Type[Any]) -> bool:
        return service_type in self._services

    def get_registrations(self) -> Dict[Type[Any], ServiceRegistration]:
        """Get all service registrations (for debugging)."""
        return self._services.copy()

    def _create_instance(self, registration: ServiceRegistration) -> Any:
        implementation = registration.implementation

        if not inspect.isclass(implementation):
            return implementation()

        signature = inspect.signature(implementation.__init__)
        type_hints = get_type_hints(implementation.__init__)

        kwargs: Dict[str, Any] = {}
        for param_name, param in signature.parameters.items():
            if param_name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            dependency = _unwrap_optional(type_hints.get(param_name, param.annotation))

            if param.default is not inspect.Parameter.empty:
                # Optional dependency: use the registered service if there is one
                if inspect.isclass(dependency) and self.is_registered(dependency):
                    kwargs[param_name] = self.resolve(dependency)
                continue

            if not inspect.isclass(dependency):
                raise ServiceResolutionException(
                    f"Cannot inject parameter '{param_name}' of {implementation.__name__}")
            kwargs[param_name] = self.resolve(dependency)

        return implementation(**kwargs)
