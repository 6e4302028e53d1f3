"""
Service Container - Dependency Injection Container

Holds the store, clock and text generator, and lazily builds the services
on first access. Tests build their own container around an in-memory store.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from pungpung.config import STORAGE_BACKEND
from pungpung.db.store import ProgressStore
from pungpung.services.text_generation import MotivationTextGenerator
from pungpung.utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Infrastructure dependencies (store, clock, generator) are injected;
    services are lazy-loaded via properties.
    """

    store: ProgressStore
    clock: Clock = field(default_factory=Clock)
    generator: Optional[MotivationTextGenerator] = None

    _progress_service: Optional[object] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.generator is None:
            self.generator = MotivationTextGenerator()

    @property
    def progress_service(self):
        """Get ProgressService instance (lazy-loaded)"""
        if self._progress_service is None:
            from pungpung.services.progress_service import ProgressService
            self._progress_service = ProgressService(self.store, self.clock, self.generator)
            logger.debug("ProgressService instantiated")
        return self._progress_service


def create_store(backend: str = STORAGE_BACKEND) -> ProgressStore:
    """Build the configured ProgressStore ('postgres' or 'memory')"""
    if backend == "memory":
        from pungpung.db.memory_store import InMemoryProgressStore
        return InMemoryProgressStore()

    from pungpung.db.postgres_store import PostgresProgressStore
    return PostgresProgressStore()


# Global container instance (initialized at application startup)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() at startup before using services."
        )
    return _container


def init_container(
    store: ProgressStore,
    clock: Optional[Clock] = None,
    generator: Optional[MotivationTextGenerator] = None
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after infrastructure setup.
    """
    global _container

    _container = ServiceContainer(
        store=store,
        clock=clock or Clock(),
        generator=generator
    )

    logger.info(f"Service container initialized with {type(store).__name__}")
    return _container


def reset_container() -> None:
    """Drop the global container (application shutdown)"""
    global _container
    _container = None
