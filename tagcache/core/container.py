"""Dependency injection container for a cache store.

Usage:
    container = Container()
    container.init_resources()  # configures logging from the settings
    store = container.store()
"""

from dependency_injector import containers, providers

from tagcache.core.config import load_settings
from tagcache.core.logging import configure_logging
from tagcache.services.store import CacheStore


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings come from TAGCACHE_* environment variables
    settings = providers.Singleton(load_settings)

    logging = providers.Resource(
        configure_logging,
        settings=settings,
    )

    # One store, hence one connection handle, per container
    store = providers.Singleton(
        CacheStore,
        settings=settings,
    )


# Global container instance
container = Container()
