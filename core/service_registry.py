"""
Service Registry - wiring container for the Vellum bridge
"""

import logging
import inspect
from enum import Enum
from dataclasses import dataclass
from threading import Lock
from typing import TypeVar, Type, Dict, Any, Optional, Callable, Set

logger = logging.getLogger('core.service_registry')

T = TypeVar('T')


class ServiceLifetime(Enum):
    """How long a resolved service lives"""
    SINGLETON = "singleton"
    TRANSIENT = "transient"


class ServiceNotFound(Exception):
    """Raised when a requested service is not registered"""
    pass


class CircularDependencyError(Exception):
    """Raised when two services need each other to be constructed"""
    pass


class ServiceConfigurationError(Exception):
    """Raised when a registration cannot be honoured"""
    pass


@dataclass
class ServiceDefinition:
    """Registration record for one service key"""
    key: Type
    implementation: Optional[Type]
    lifetime: ServiceLifetime
    factory: Optional[Callable] = None
    instance: Optional[Any] = None


class ServiceRegistry:
    """
    Small dependency injection container.

    Services are keyed by type. A concrete class registered without a factory
    is built by resolving the annotated parameters of its constructor, so a
    service declared as ``def __init__(self, service_registry: ServiceRegistry)``
    receives the registry itself and pulls its collaborators from it.

    Usage:
        registry = ServiceRegistry()
        registry.register_instance(ServiceRegistry, registry)
        registry.register(RosterManager)
        roster_manager = registry.get(RosterManager)
    """

    def __init__(self):
        self._services: Dict[Type, ServiceDefinition] = {}
        self._resolving: Set[Type] = set()
        self._lock = Lock()
        logger.info("ServiceRegistry initialized")

    def register(
        self,
        key: Type[T],
        implementation: Optional[Type[T]] = None,
        lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
        factory: Optional[Callable[..., T]] = None
    ) -> 'ServiceRegistry':
        """
        Register a service type.

        Args:
            key: Type used to look the service up
            implementation: Concrete class, defaults to ``key``
            lifetime: Singleton or transient
            factory: Optional callable building the instance instead of a class

        Returns:
            Self for chaining

        Raises:
            ServiceConfigurationError: If both or neither construction path is usable
        """
        with self._lock:
            if implementation is not None and factory is not None:
                raise ServiceConfigurationError(
                    f"{key.__name__}: pass an implementation or a factory, not both"
                )

            if implementation is None and factory is None:
                if inspect.isabstract(key):
                    raise ServiceConfigurationError(
                        f"{key.__name__} is abstract and needs an implementation"
                    )
                implementation = key

            if implementation is not None and not issubclass(implementation, key):
                raise ServiceConfigurationError(
                    f"{implementation.__name__} is not a subclass of {key.__name__}"
                )

            self._services[key] = ServiceDefinition(
                key=key,
                implementation=implementation,
                lifetime=lifetime,
                factory=factory
            )

            built_by = "factory" if factory else implementation.__name__
            logger.info(f"Registered service: {key.__name__} -> {built_by} ({lifetime.value})")
            return self

    def register_instance(self, key: Type[T], instance: T) -> 'ServiceRegistry':
        """Register an already constructed object as a singleton"""
        with self._lock:
            self._services[key] = ServiceDefinition(
                key=key,
                implementation=type(instance),
                lifetime=ServiceLifetime.SINGLETON,
                instance=instance
            )
            logger.info(f"Registered instance: {key.__name__}")
            return self

    def unregister(self, key: Type) -> bool:
        """Remove a registration; True if one existed"""
        with self._lock:
            removed = self._services.pop(key, None) is not None
            if removed:
                logger.info(f"Unregistered service: {key.__name__}")
            return removed

    def get(self, key: Type[T]) -> T:
        """
        Resolve a service.

        Raises:
            ServiceNotFound: If nothing is registered under ``key``
            CircularDependencyError: If construction loops back on itself
        """
        return self._resolve(key)

    def get_optional(self, key: Type[T]) -> Optional[T]:
        """Resolve a service or return None when it is not registered"""
        try:
            return self.get(key)
        except ServiceNotFound:
            return None

    def is_registered(self, key: Type) -> bool:
        return key in self._services

    def get_registered_services(self) -> Dict[Type, ServiceDefinition]:
        """Snapshot of registrations (debugging and stats)"""
        return self._services.copy()

    def _resolve(self, key: Type[T]) -> T:
        if key in self._resolving:
            chain = " -> ".join(t.__name__ for t in self._resolving)
            raise CircularDependencyError(f"Circular dependency: {chain} -> {key.__name__}")

        definition = self._services.get(key)
        if definition is None:
            raise ServiceNotFound(f"Service {getattr(key, '__name__', key)} is not registered")

        if definition.lifetime == ServiceLifetime.SINGLETON and definition.instance is not None:
            return definition.instance

        self._resolving.add(key)
        try:
            if definition.factory is not None:
                instance = definition.factory(**self._resolve_parameters(definition.factory))
            else:
                instance = definition.implementation(
                    **self._resolve_parameters(definition.implementation.__init__)
                )

            if definition.lifetime == ServiceLifetime.SINGLETON:
                definition.instance = instance

            logger.debug(f"Resolved service: {key.__name__}")
            return instance
        finally:
            self._resolving.discard(key)

    def _resolve_parameters(self, target: Callable) -> Dict[str, Any]:
        """Resolve annotated parameters; parameters with defaults are optional"""
        kwargs: Dict[str, Any] = {}
        for name, param in inspect.signature(target).parameters.items():
            if name == 'self' or param.annotation is inspect.Parameter.empty:
                continue
            if param.default is not inspect.Parameter.empty:
                try:
                    kwargs[name] = self._resolve(param.annotation)
                except ServiceNotFound:
                    pass
            else:
                kwargs[name] = self._resolve(param.annotation)
        return kwargs
